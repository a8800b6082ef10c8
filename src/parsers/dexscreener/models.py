from decimal import Decimal

from pydantic import BaseModel


class DexScreenerToken(BaseModel):
    address: str
    name: str | None = None
    symbol: str | None = None

    model_config = {"extra": "ignore"}


class DexScreenerVolume(BaseModel):
    h1: Decimal | None = None
    h6: Decimal | None = None
    h24: Decimal | None = None

    model_config = {"extra": "ignore"}


class DexScreenerLiquidity(BaseModel):
    usd: Decimal | None = None

    model_config = {"extra": "ignore"}


class DexScreenerTxns(BaseModel):
    buys: int | None = None
    sells: int | None = None

    model_config = {"extra": "ignore"}


class DexScreenerTxnsByPeriod(BaseModel):
    h24: DexScreenerTxns | None = None

    model_config = {"extra": "ignore"}


class DexScreenerPriceChange(BaseModel):
    h24: Decimal | None = None

    model_config = {"extra": "ignore"}


class DexScreenerLink(BaseModel):
    type: str | None = None
    label: str | None = None
    url: str | None = None

    model_config = {"extra": "ignore"}


class DexScreenerInfo(BaseModel):
    imageUrl: str | None = None
    header: str | None = None
    openGraph: str | None = None
    websites: list[DexScreenerLink] | None = None
    socials: list[DexScreenerLink] | None = None

    model_config = {"extra": "ignore"}

    def social(self, kind: str) -> str | None:
        for link in self.socials or []:
            if link.type == kind and link.url:
                return link.url
        return None


class DexScreenerBoosts(BaseModel):
    active: int | None = None

    model_config = {"extra": "ignore"}


class DexScreenerPair(BaseModel):
    chainId: str = ""
    dexId: str = ""
    url: str | None = None
    pairAddress: str = ""
    baseToken: DexScreenerToken | None = None
    quoteToken: DexScreenerToken | None = None
    priceUsd: str | None = None
    volume: DexScreenerVolume | None = None
    liquidity: DexScreenerLiquidity | None = None
    priceChange: DexScreenerPriceChange | None = None
    fdv: Decimal | None = None
    marketCap: Decimal | None = None
    pairCreatedAt: int | None = None
    txns: DexScreenerTxnsByPeriod | None = None
    info: DexScreenerInfo | None = None
    boosts: DexScreenerBoosts | None = None

    model_config = {"extra": "ignore"}

    @property
    def liquidity_usd(self) -> float:
        return float(self.liquidity.usd) if self.liquidity and self.liquidity.usd else 0.0

    @property
    def is_paid(self) -> bool:
        """Boosted or carrying paid token-profile assets (header / OG image)."""
        if self.boosts and (self.boosts.active or 0) > 0:
            return True
        return bool(self.info and (self.info.header or self.info.openGraph))


class DexScreenerSearchResponse(BaseModel):
    pairs: list[dict] | None = None

    model_config = {"extra": "ignore"}
