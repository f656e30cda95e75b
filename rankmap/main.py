"""ヒートマップ・順位チェック — コマンドラインエントリーポイント.

  python -m rankmap.main scan --account UUID --project UUID --keyword "web design in doncaster" \\
      --lat 53.52 --lng -1.13 --preset standard
  python -m rankmap.main rankings --account UUID --project UUID
  python -m rankmap.main credits --account UUID --kind heat_map
  python -m rankmap.main history --project UUID --keyword "web design in doncaster" [--all | --delete]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime

from rankmap.config import GRID_LAYOUTS, GRID_PRESETS, LOG_DIR, QUOTA_PERIODS
from rankmap.engine import run_scan
from rankmap.errors import HeatMapError
from rankmap.grid import grid_from_preset
from rankmap.models import ScanRequest
from rankmap.organic import check_rankings
from rankmap.quota import QuotaLedger
from rankmap.store import clear_grid, load_history


def setup_logging() -> None:
    """ロギングの初期設定."""
    LOG_DIR.mkdir(exist_ok=True)
    log_file = LOG_DIR / f"rankmap_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rankmap")
    sub = parser.add_subparsers(dest="command", required=True)

    scan = sub.add_parser("scan", help="ヒートマップスキャンを実行する")
    scan.add_argument("--account", required=True)
    scan.add_argument("--project", required=True)
    scan.add_argument("--keyword", required=True)
    scan.add_argument("--lat", type=float, required=True)
    scan.add_argument("--lng", type=float, required=True)
    scan.add_argument("--grid-size", type=int)
    scan.add_argument("--radius-km", type=float)
    scan.add_argument("--preset", choices=sorted(GRID_PRESETS))
    scan.add_argument("--layout", choices=GRID_LAYOUTS, default="square")
    scan.add_argument("--combination-id")

    rankings = sub.add_parser("rankings", help="公開済みページの順位をチェックする")
    rankings.add_argument("--account", required=True)
    rankings.add_argument("--project", required=True)
    rankings.add_argument("--combination-id", action="append", dest="combination_ids")

    history = sub.add_parser("history", help="保存済みのヒートマップを表示・削除する")
    history.add_argument("--project", required=True)
    history.add_argument("--keyword", required=True)
    mode = history.add_mutually_exclusive_group()
    mode.add_argument("--all", action="store_true", dest="include_scans", help="全スキャン履歴も出力する")
    mode.add_argument("--delete", action="store_true", help="地点データを削除する")

    credits = sub.add_parser("credits", help="クォータ残量を表示する")
    credits.add_argument("--account", required=True)
    credits.add_argument("--kind", choices=sorted(QUOTA_PERIODS), default="heat_map")

    return parser


def scan_request_from_args(args: argparse.Namespace) -> ScanRequest:
    """引数から ScanRequest を作る. 明示の --grid-size / --radius-km がプリセットより優先."""
    grid_size, radius_km = grid_from_preset(args.preset or "standard")
    return ScanRequest(
        project_id=args.project,
        keyword_combination=args.keyword,
        center_lat=args.lat,
        center_lng=args.lng,
        grid_size=args.grid_size if args.grid_size is not None else grid_size,
        radius_km=args.radius_km if args.radius_km is not None else radius_km,
        combination_id=args.combination_id,
        layout=args.layout,
    )


def history_command(args: argparse.Namespace) -> dict:
    if args.delete:
        clear_grid(args.project, args.keyword)
        return {"success": True, "deleted": True}
    return load_history(args.project, args.keyword, include_scans=args.include_scans)


def run(argv: list[str] | None = None) -> int:
    """メイン処理."""
    args = build_parser().parse_args(argv)
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        if args.command == "scan":
            result = run_scan(args.account, scan_request_from_args(args))
        elif args.command == "rankings":
            result = check_rankings(args.account, args.project, args.combination_ids)
        elif args.command == "history":
            result = history_command(args)
        else:
            result = QuotaLedger(args.kind).credits(args.account)
    except HeatMapError as e:
        logger.error("%s エラー: %s", e.category, e)
        print(json.dumps({"success": False, "category": e.category, "error": str(e)}))
        return 1

    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(run())
