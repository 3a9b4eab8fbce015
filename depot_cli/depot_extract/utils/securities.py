"""In-memory get-or-create lookup for securities named in documents."""

from __future__ import annotations

import logging

from ..types import SecurityRef
from .amounts import normalize_currency, trim

_LOGGER = logging.getLogger(__name__)


class SecurityCatalog:
    """Resolve securities by ISIN, then WKN, then name, creating them on first sight.

    One catalog is typically shared by every document of a run so the same
    instrument resolves to the same ``SecurityRef`` across documents.
    """

    def __init__(self) -> None:
        self._by_isin: dict[str, SecurityRef] = {}
        self._by_wkn: dict[str, SecurityRef] = {}
        self._by_name: dict[str, SecurityRef] = {}
        self._securities: list[SecurityRef] = []

    def __len__(self) -> int:
        return len(self._securities)

    def __iter__(self):
        return iter(self._securities)

    def discard_since(self, count: int) -> None:
        """Forget every security created after the first ``count``."""

        while len(self._securities) > count:
            security = self._securities.pop()
            for index, key in (
                (self._by_isin, security.isin),
                (self._by_wkn, security.wkn),
                (self._by_name, security.name.lower() if security.name else None),
            ):
                if key and index.get(key) is security:
                    del index[key]

    def resolve(
        self,
        name: str | None = None,
        isin: str | None = None,
        wkn: str | None = None,
        currency: str | None = None,
    ) -> SecurityRef:
        name = trim(name) or None
        isin = (isin or "").strip().upper() or None
        wkn = (wkn or "").strip().upper() or None
        currency = normalize_currency(currency) if currency else None

        existing = (
            (isin and self._by_isin.get(isin))
            or (wkn and self._by_wkn.get(wkn))
            or (name and self._by_name.get(name.lower()))
        )
        if existing:
            return existing

        if not (name or isin or wkn):
            raise ValueError("A security needs at least a name, ISIN, or WKN")

        security = SecurityRef(name=name, isin=isin, wkn=wkn, currency=currency)
        _LOGGER.debug("Created security %s (%s)", name, isin or wkn or "no identifier")
        self._securities.append(security)
        if isin:
            self._by_isin[isin] = security
        if wkn:
            self._by_wkn[wkn] = security
        if name:
            self._by_name[name.lower()] = security
        return security
