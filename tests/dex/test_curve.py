import pytest

from analysis.models import TokenInfo, TokenPair
from dex.curve import CurveSource
from dex.errors import InvalidPair, ParseError

USDC = TokenInfo('USDC', '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48', 6)
DAI = TokenInfo('DAI', '0x6b175474e89094c44da98b954eedeac495271d0f', 18)
WBTC = TokenInfo('WBTC', '0x2260fac5e5542a773aa44fbcfedf7c193bc2c599', 8)


class FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def raise_for_status(self):
        return None

    async def json(self, content_type=None):
        return self._payload


class FakeSession:
    def __init__(self, payloads):
        self._payloads = list(payloads)
        self.urls = []

    def request(self, method, url, params=None, json=None, timeout=None):
        self.urls.append(url)
        if not self._payloads:
            raise AssertionError("No more fake responses configured")
        return FakeResponse(self._payloads.pop(0))


def _coin(token, balance, usd_price=None):
    coin = {
        'address': token.address.upper().replace('0X', '0x'),
        'symbol': token.symbol,
        'decimals': str(token.decimals),
        'poolBalance': str(int(balance * 10 ** token.decimals)),
    }
    if usd_price is not None:
        coin['usdPrice'] = usd_price
    return coin


def _pools_payload(*pools):
    return {'success': True, 'data': {'poolData': list(pools)}}


def _source(session, **kwargs):
    return CurveSource(session, name='curve', chain='ethereum', fee_percentage=0.04, **kwargs)


@pytest.mark.asyncio
async def test_quote_uses_deepest_pool_with_usd_prices():
    shallow = {'id': 'small', 'usdTotal': 10_000, 'coins': [_coin(USDC, 5_000, 1.0), _coin(DAI, 5_000, 1.0)]}
    deep = {'id': '3pool', 'usdTotal': 300_000_000, 'coins': [_coin(DAI, 100_000_000, 1.001), _coin(USDC, 100_000_000, 0.999)]}
    session = FakeSession([_pools_payload(shallow, deep)])

    quote = await _source(session).quote(TokenPair(DAI, USDC))

    assert quote.price == pytest.approx(1.001 / 0.999)
    assert quote.liquidity == pytest.approx(300_000_000 / 0.999)
    assert session.urls == ['https://api.curve.fi/api/getPools/ethereum/main']


@pytest.mark.asyncio
async def test_quote_falls_back_to_balance_ratio_without_usd_prices():
    pool = {'id': 'plain', 'usdTotal': None, 'coins': [_coin(USDC, 1_010_000), _coin(DAI, 1_000_000)]}
    session = FakeSession([_pools_payload(pool)])

    quote = await _source(session).quote(TokenPair(DAI, USDC))

    assert quote.price == pytest.approx(1.01)
    assert quote.liquidity == pytest.approx(2_020_000)


@pytest.mark.asyncio
async def test_pool_list_is_cached_between_quotes():
    pool = {'id': '3pool', 'usdTotal': 1_000_000, 'coins': [_coin(DAI, 500_000, 1.0), _coin(USDC, 500_000, 1.0)]}
    session = FakeSession([_pools_payload(pool)])
    source = _source(session, pool_cache_ttl=60.0)

    await source.quote(TokenPair(DAI, USDC))
    await source.quote(TokenPair(USDC, DAI))

    assert len(session.urls) == 1


@pytest.mark.asyncio
async def test_no_pool_holding_both_coins_is_invalid_pair():
    pool = {'id': '3pool', 'usdTotal': 1_000_000, 'coins': [_coin(DAI, 500_000, 1.0), _coin(USDC, 500_000, 1.0)]}
    session = FakeSession([_pools_payload(pool)])

    with pytest.raises(InvalidPair):
        await _source(session).quote(TokenPair(WBTC, USDC))


@pytest.mark.asyncio
async def test_unsuccessful_payload_is_parse_error():
    session = FakeSession([{'success': False, 'err': 'registry unavailable'}])

    with pytest.raises(ParseError):
        await _source(session).quote(TokenPair(DAI, USDC))


@pytest.mark.asyncio
async def test_malformed_balance_is_parse_error():
    coin = _coin(DAI, 1_000, 1.0)
    coin['poolBalance'] = 'not-a-number'
    pool = {'id': 'broken', 'usdTotal': 1_000, 'coins': [coin, _coin(USDC, 1_000, 1.0)]}
    session = FakeSession([_pools_payload(pool)])

    with pytest.raises(ParseError):
        await _source(session).quote(TokenPair(DAI, USDC))
