"""ファイル操作関連のユーティリティ"""
import os
import fnmatch
from typing import List


class FileScanner:
    """ファイルスキャン機能"""

    def __init__(self, exclude_patterns: List[str] = None):
        self.exclude_patterns = exclude_patterns or []

    def should_exclude(self, file_path: str) -> bool:
        """ファイルが除外パターンに一致するかチェック"""
        file_name = os.path.basename(file_path)

        for pattern in self.exclude_patterns:
            # ファイル名でのマッチ
            if fnmatch.fnmatch(file_name, pattern):
                return True
            # パス全体でのマッチ
            if fnmatch.fnmatch(file_path, f"*{pattern}*"):
                return True

        return False

    def walk_dir(self, directory: str, suffix: str = "") -> List[str]:
        """ディレクトリ配下のファイルを相対パス（"/" 区切り）の昇順で返す

        suffix はカンマ区切りの拡張子リスト（大文字小文字を区別しない）。
        指定時は一致するファイルのみを返す。
        """
        if not os.path.isdir(directory):
            raise ValueError(f"Not a directory: {directory}")

        suffixes = tuple(s for s in suffix.lower().split(",") if s)
        result = []
        for root, dirs, files in os.walk(directory):
            # 除外パターンに一致するディレクトリをスキップ
            dirs[:] = [d for d in dirs if not self.should_exclude(os.path.join(root, d))]

            for file in files:
                file_path = os.path.join(root, file)
                if self.should_exclude(file_path):
                    continue
                if suffixes and not file.lower().endswith(suffixes):
                    continue
                relative_path = os.path.relpath(file_path, directory)
                result.append(relative_path.replace(os.sep, "/"))

        return sorted(result)
