"""クォータ台帳.

アカウント×種別 (heat_map / rank_check) ごとに 1 行を持ち、
1 日 (または 1 か月) ごとに使用数を 0 に戻す。リセット判定は
タイマーではなく各リクエストの開始時に同期的に行う。

複数プロセスから同時にスキャンされうるため、使用数の更新は
すべて DB 側の 1 回の条件付き更新・加算更新で行う。
  - reserve: 残量の範囲で使用数を先に確保する
  - commit:  実際に呼び出した回数との差分を戻す
結果として使用数は実際の呼び出し回数だけ増える。
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta, timezone
from typing import Callable

from rankmap import db
from rankmap.config import QUOTA_PERIODS
from rankmap.errors import PlanAccessError
from rankmap.models import QuotaState

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _add_month(dt: datetime) -> datetime:
    if dt.month == 12:
        return dt.replace(year=dt.year + 1, month=1)
    return dt.replace(month=dt.month + 1)


def next_reset_at(now: datetime, period: str = "daily") -> datetime:
    """now より後の最初の期間境界 (UTC の 0 時 / 月初) を返す."""
    midnight = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    if period == "daily":
        return midnight + timedelta(days=1)
    if period == "monthly":
        return _add_month(midnight.replace(day=1))
    raise ValueError(f"unknown quota period: {period}")


def advance_reset_at(reset_at: datetime, now: datetime, period: str = "daily") -> datetime:
    """reset_at を 1 期間ずつ進め、now より後になった時点の値を返す."""
    while reset_at <= now:
        if period == "daily":
            reset_at += timedelta(days=1)
        elif period == "monthly":
            reset_at = _add_month(reset_at)
        else:
            raise ValueError(f"unknown quota period: {period}")
    return reset_at


def grantable(state: QuotaState, requested: int) -> int:
    """要求数のうち残量で許可できる数."""
    return max(0, min(requested, state.remaining))


class QuotaLedger:
    """1 種別分のクォータ台帳."""

    def __init__(self, kind: str = "heat_map", clock: Callable[[], datetime] = _utcnow):
        if kind not in QUOTA_PERIODS:
            raise ValueError(f"unknown quota kind: {kind}")
        self.kind = kind
        self.period = QUOTA_PERIODS[kind]
        self.clock = clock

    def allowance(self, account_id: str) -> int:
        """プランとプロジェクト数から 1 期間の許可数を計算する.

        許可数 = base + per_site × プロジェクト数

        Raises:
            PlanAccessError: プランにこの機能の枠が無い (0/0)
        """
        plan = db.get_user_plan(account_id) or {}
        base = int(plan.get(f"{self.kind}_daily_base") or 0)
        per_site = int(plan.get(f"{self.kind}_per_site") or 0)
        if base == 0 and per_site == 0:
            raise PlanAccessError(
                f"現在のプランでは {self.kind} を利用できません。プランをアップグレードしてください。"
            )
        return base + per_site * db.count_projects(account_id)

    def state(self, account_id: str, allowed: int | None = None) -> QuotaState:
        """台帳を読み、期間が過ぎていればリセットしてから返す.

        行が無ければ使用数 0・次の期間境界で作成する。
        """
        if allowed is None:
            allowed = self.allowance(account_id)
        now = self.clock()

        row = db.get_quota_row(account_id, self.kind)
        if row is None:
            db.create_quota_row(
                account_id, self.kind, next_reset_at(now, self.period).isoformat()
            )
            row = db.get_quota_row(account_id, self.kind) or {
                "checks_used": 0,
                "checks_purchased": 0,
                "reset_at": next_reset_at(now, self.period).isoformat(),
            }

        reset_at = parse_timestamp(row["reset_at"])
        if now >= reset_at:
            new_reset_at = advance_reset_at(reset_at, now, self.period)
            if db.reset_quota_row(
                account_id, self.kind, row["reset_at"], new_reset_at.isoformat()
            ):
                logger.info(
                    "クォータをリセット: user=%s, kind=%s, 次回=%s",
                    account_id, self.kind, new_reset_at.isoformat(),
                )
                row = {**row, "checks_used": 0, "reset_at": new_reset_at.isoformat()}
            else:
                # 他のリクエストが先にリセットした
                row = db.get_quota_row(account_id, self.kind) or row

        return QuotaState(
            account_id=account_id,
            kind=self.kind,
            checks_used=int(row.get("checks_used") or 0),
            checks_allowed=allowed,
            checks_purchased=int(row.get("checks_purchased") or 0),
            reset_at=parse_timestamp(row["reset_at"]),
        )

    def reserve(self, account_id: str, requested: int) -> int:
        """残量の範囲で requested 件を確保し、確保できた件数を返す.

        残量不足なら残量分まで切り詰める。残量 0 なら 0 を返す。

        Raises:
            PlanAccessError: プランにこの機能の枠が無い
        """
        allowed = self.allowance(account_id)
        state = self.state(account_id, allowed)
        if grantable(state, requested) == 0:
            logger.warning(
                "クォータ残量なし: user=%s, kind=%s, used=%d/%d",
                account_id, self.kind, state.checks_used,
                state.checks_allowed + state.checks_purchased,
            )
            return 0

        data = db.reserve_quota_checks(account_id, self.kind, requested, allowed)
        granted = int(data.get("granted") or 0)
        logger.info(
            "クォータ確保: user=%s, kind=%s, 要求=%d, 確保=%d",
            account_id, self.kind, requested, granted,
        )
        return granted

    def commit(self, account_id: str, used: int, reserved: int) -> None:
        """実際の呼び出し回数を確定し、未使用分を戻す."""
        unused = reserved - used
        if unused <= 0:
            return
        checks_used = db.adjust_quota_checks(account_id, self.kind, -unused)
        logger.info(
            "クォータ確定: user=%s, kind=%s, 使用=%d, 返却=%d, 使用数=%d",
            account_id, self.kind, used, unused, checks_used,
        )

    def remaining(self, account_id: str) -> int:
        return self.state(account_id).remaining

    def credits(self, account_id: str) -> dict:
        """クレジット状況を返す (UI 表示用)."""
        state = self.state(account_id)
        return {
            "checks_used": state.checks_used,
            "checks_allowed": state.checks_allowed,
            "checks_purchased": state.checks_purchased,
            "checks_remaining": state.remaining,
            "reset_at": state.reset_at.isoformat(),
        }
