"""ビジネス名の曖昧照合モジュール.

プロバイダの検索結果から「自社ビジネス」を探す。
照合は意図的に緩い (見逃しより誤検出のほうが許容できる)。
結果はベストエフォートであり、厳密な同一性判定ではない。
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from rankmap.config import MAPS_SEARCH_DEPTH
from rankmap.models import BusinessIdentity, Listing, MatchResult

logger = logging.getLogger(__name__)

_MIN_TOKEN_LENGTH = 3


def normalize(text: str | None) -> str:
    return (text or "").lower().strip()


def strip_www(domain: str) -> str:
    domain = normalize(domain)
    if domain.startswith("www."):
        return domain[len("www."):]
    return domain


def domain_from_url(url: str | None) -> str | None:
    """URL からホスト名 (www. 除去済み) を取り出す.

    スキーム無しの値 ("example.com/path") も受け付ける。
    """
    if not url:
        return None
    value = url.strip()
    if "://" not in value:
        value = f"http://{value}"
    host = urlparse(value).hostname or ""
    host = strip_www(host)
    return host or None


def _tokens(text: str) -> list[str]:
    return [w for w in text.split() if len(w) >= _MIN_TOKEN_LENGTH]


def _name_contains(target: str, title: str) -> bool:
    return target in title or title in target


def _tokens_overlap(target: str, title: str) -> bool:
    title_tokens = _tokens(title)
    for bw in _tokens(target):
        if any(tw in bw or bw in tw for tw in title_tokens):
            return True
    return False


def _domains_overlap(target_domain: str, listing_domain: str) -> bool:
    a = strip_www(target_domain)
    b = strip_www(listing_domain)
    if not a or not b:
        return False
    return a in b or b in a


def is_match(identity: BusinessIdentity, listing: Listing) -> bool:
    """1 件の検索結果が対象ビジネスかどうかを判定する.

    判定順: 名前の部分一致 → 単語 (3 文字以上) の重なり → ドメインの包含。
    """
    title = normalize(listing.title)
    if not title:
        return False

    target = normalize(identity.name)
    if target:
        if _name_contains(target, title):
            return True
        if _tokens_overlap(target, title):
            return True

    if identity.domain and listing.domain:
        if _domains_overlap(identity.domain, listing.domain):
            return True

    return False


def match(
    identity: BusinessIdentity,
    candidates: list[Listing],
    depth: int = MAPS_SEARCH_DEPTH,
) -> MatchResult | None:
    """検索結果リストから対象ビジネスを探す.

    Args:
        identity: 対象ビジネス (名前・ドメイン)
        candidates: プロバイダの返却順の検索結果
        depth: 確認する最大件数

    Returns:
        最初に一致した結果と順位 (1 始まり)。見つからなければ None (圏外)。
        順位はプロバイダの rank_group / rank_absolute を優先し、無ければ並び順。
    """
    for index, listing in enumerate(candidates[:depth], start=1):
        if is_match(identity, listing):
            return MatchResult(listing=listing, rank=listing.rank or index)
    return None
