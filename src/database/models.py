"""Record types for aggregator data and snapshot envelopes"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from src.errors import ValidationFailure

PROTOCOL_REQUIRED_FIELDS = (
    'platformId', 'platformName', 'logo', 'network', 'platformWebSite', 'platformMinInfos'
)
PLATFORM_MIN_INFO_REQUIRED_FIELDS = ('investmentId', 'protocolId', 'network', 'chainId')


def _require_mapping(record: Any, kind: str) -> Dict:
    if not isinstance(record, dict):
        raise ValidationFailure(f"{kind} is not an object", record)
    return record


@dataclass
class UnderlyingToken:
    """One token a product is denominated in"""
    token_symbol: str
    token_address: str
    is_base_token: bool = False

    @classmethod
    def from_dict(cls, raw: Dict) -> "UnderlyingToken":
        raw = _require_mapping(raw, "underlyingToken")
        return cls(
            token_symbol=raw.get('tokenSymbol') or '',
            token_address=raw.get('tokenAddress') or '',
            is_base_token=bool(raw.get('isBaseToken', False)),
        )


@dataclass
class Product:
    """
    One investment product from the aggregator.

    The upstream record is kept whole in ``raw`` so fields this module does not
    model still reach the snapshot. ``network`` and ``tokenAddr`` are written
    into ``raw`` when the record is tagged by the paginator.
    """
    raw: Dict[str, Any]

    @classmethod
    def from_page_item(cls, item: Any, network: str) -> "Product":
        """Tag a raw page item with its source network and canonical token address"""
        item = _require_mapping(item, "product")
        if not item.get('investmentId'):
            raise ValidationFailure("product missing investmentId", item)

        underlying = item.get('underlyingToken') or []
        if not isinstance(underlying, list):
            raise ValidationFailure("underlyingToken is not a list", item)

        raw = dict(item)
        first = underlying[0] if underlying and isinstance(underlying[0], dict) else {}
        raw['tokenAddr'] = first.get('tokenAddress') or ''
        raw['network'] = network
        return cls(raw=raw)

    @property
    def investment_id(self) -> str:
        return str(self.raw.get('investmentId'))

    @property
    def investment_name(self) -> str:
        return self.raw.get('investmentName') or ''

    @property
    def network(self) -> str:
        return self.raw.get('network') or ''

    @property
    def token_addr(self) -> str:
        return self.raw.get('tokenAddr') or ''

    @property
    def platform_id(self) -> Any:
        return self.raw.get('platformId')

    @property
    def underlying_tokens(self) -> List[UnderlyingToken]:
        return [
            UnderlyingToken.from_dict(token)
            for token in self.raw.get('underlyingToken') or []
            if isinstance(token, dict)
        ]

    @property
    def is_enriched(self) -> bool:
        return bool(self.raw.get('tokenId'))

    def with_fields(self, **fields) -> "Product":
        """Return a copy with extra fields set; the receiver is left untouched"""
        raw = dict(self.raw)
        raw.update(fields)
        return Product(raw=raw)

    def to_dict(self) -> dict:
        return dict(self.raw)


@dataclass
class PlatformMinInfo:
    investment_id: str
    protocol_id: str
    network: str
    chain_id: str

    @classmethod
    def from_dict(cls, raw: Any) -> "PlatformMinInfo":
        raw = _require_mapping(raw, "platformMinInfo")
        missing = [name for name in PLATFORM_MIN_INFO_REQUIRED_FIELDS if name not in raw]
        if missing:
            raise ValidationFailure(f"platformMinInfo missing {', '.join(missing)}", raw)
        return cls(
            investment_id=raw['investmentId'],
            protocol_id=raw['protocolId'],
            network=raw['network'],
            chain_id=raw['chainId'],
        )

    def to_dict(self) -> dict:
        return {
            'investmentId': self.investment_id,
            'protocolId': self.protocol_id,
            'network': self.network,
            'chainId': self.chain_id,
        }


@dataclass
class Protocol:
    """A DeFi platform listed by the aggregator"""
    platform_id: int
    platform_name: str
    logo: str
    network: str
    platform_website: str
    platform_min_infos: List[PlatformMinInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "Protocol":
        """
        Parse a protocol list entry.

        Raises:
            ValidationFailure: if a required field is missing or null, platformMinInfos
                is empty or any of its elements is incomplete
        """
        raw = _require_mapping(raw, "protocol")
        missing = [name for name in PROTOCOL_REQUIRED_FIELDS if raw.get(name) is None]
        if missing:
            raise ValidationFailure(f"protocol missing {', '.join(missing)}", raw)

        infos = raw['platformMinInfos']
        if not isinstance(infos, list) or not infos:
            raise ValidationFailure(
                f"invalid platformMinInfos for protocol {raw.get('platformName')}", raw
            )

        return cls(
            platform_id=raw['platformId'],
            platform_name=raw['platformName'],
            logo=raw['logo'],
            network=raw['network'],
            platform_website=raw['platformWebSite'],
            platform_min_infos=[PlatformMinInfo.from_dict(info) for info in infos],
        )

    def to_dict(self) -> dict:
        return {
            'platformId': self.platform_id,
            'platformName': self.platform_name,
            'logo': self.logo,
            'network': self.network,
            'platformWebSite': self.platform_website,
            'platformMinInfos': [info.to_dict() for info in self.platform_min_infos],
        }


@dataclass
class TokenInfo:
    """A token deployment on one network"""
    token_id: str
    token_symbol: str
    network: str
    logo_url: Optional[str] = None
    token_address: Optional[str] = None
    token_decimal: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Any) -> "TokenInfo":
        raw = _require_mapping(raw, "tokenInfo")
        if not raw.get('tokenId'):
            raise ValidationFailure("tokenInfo missing tokenId", raw)
        decimal = raw.get('tokenDecimal')
        if isinstance(decimal, str):
            decimal = decimal.strip() or None
        return cls(
            token_id=str(raw['tokenId']),
            token_symbol=raw.get('tokenSymbol') or '',
            network=raw.get('network') or '',
            logo_url=raw.get('logoUrl'),
            token_address=raw.get('tokenAddress'),
            token_decimal=str(decimal) if decimal is not None else None,
        )

    def to_dict(self) -> dict:
        return {
            'tokenId': self.token_id,
            'tokenSymbol': self.token_symbol,
            'network': self.network,
            'logoUrl': self.logo_url,
            'tokenAddress': self.token_address,
            'tokenDecimal': self.token_decimal,
        }


@dataclass
class TokenData:
    """All per-network deployments of one token symbol"""
    symbol: str
    token_infos: List[TokenInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "TokenData":
        """Parse a token list entry, dropping deployments without a tokenId"""
        raw = _require_mapping(raw, "token")
        infos = raw.get('tokenInfos')
        if not isinstance(infos, list):
            raise ValidationFailure(f"tokenInfos missing for {raw.get('symbol')}", raw)

        parsed = []
        for info in infos:
            try:
                parsed.append(TokenInfo.from_dict(info))
            except ValidationFailure:
                continue

        if not parsed:
            raise ValidationFailure(f"no valid tokenInfos for {raw.get('symbol')}", raw)
        return cls(symbol=raw.get('symbol') or '', token_infos=parsed)

    def to_dict(self) -> dict:
        return {
            'symbol': self.symbol,
            'tokenInfos': [info.to_dict() for info in self.token_infos],
        }


# ============================================
# Snapshot envelopes
# ============================================

def build_products_snapshot(timestamp: str, network: str, products: List[Product]) -> dict:
    return {
        'timestamp': timestamp,
        'network': network,
        'products': [product.to_dict() for product in products],
    }


def build_all_products_snapshot(timestamp: str, networks: Dict[str, List[Product]]) -> dict:
    """Combined snapshot with a per-network map and a flattened product list"""
    by_network = {
        network: [product.to_dict() for product in products]
        for network, products in networks.items()
    }
    flattened = [product for products in by_network.values() for product in products]
    return {
        'timestamp': timestamp,
        'networks': by_network,
        'products': flattened,
    }


def build_protocols_snapshot(timestamp: str, protocols: List[Protocol]) -> dict:
    return {
        'timestamp': timestamp,
        'protocols': [protocol.to_dict() for protocol in protocols],
    }


def build_tokens_snapshot(timestamp: str, tokens: List[TokenData]) -> dict:
    return {
        'timestamp': timestamp,
        'tokens': [token.to_dict() for token in tokens],
    }
