#!/usr/bin/env python3
"""S3 Mover - エントリーポイント"""
import sys

from s3_mover import S3Mover


def main():
    """メイン関数"""
    config_path = sys.argv[1] if len(sys.argv) > 1 else "config.json"
    try:
        mover = S3Mover(config_path)
        successful, failed = mover.run()

        # 終了コードを設定
        exit_code = 0 if failed == 0 else 1
        sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
