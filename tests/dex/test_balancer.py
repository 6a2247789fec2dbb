import pytest

from analysis.models import TokenInfo, TokenPair
from dex.balancer import BalancerSource
from dex.errors import InvalidPair, ParseError

WETH = TokenInfo('WETH', '0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2', 18)
DAI = TokenInfo('DAI', '0x6b175474e89094c44da98b954eedeac495271d0f', 18)


class FakeResponse:
    def __init__(self, payload):
        self._payload = payload
        self.status = 200

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
        self.calls = []

    def request(self, method, url, params=None, json=None, timeout=None):
        self.calls.append((method, url, json))
        return FakeResponse(self._payloads.pop(0))


def _source(session):
    return BalancerSource(
        session,
        subgraph_url='http://mock-subgraph',
        name='balancer',
        chain='ethereum',
        fee_percentage=0.3,
    )


def _pool(tokens):
    return {'data': {'pools': [{'id': '0xpool', 'poolType': 'Weighted', 'totalLiquidity': '1000000', 'tokens': tokens}]}}


@pytest.mark.asyncio
async def test_weighted_spot_price():
    # 80/20 pool: 400 WETH and 200k DAI gives (200000/0.2) / (400/0.8) = 2000 DAI per WETH.
    session = FakeSession([_pool([
        {'address': WETH.address, 'balance': '400', 'weight': '0.8'},
        {'address': DAI.address, 'balance': '200000', 'weight': '0.2'},
    ])])

    quote = await _source(session).quote(TokenPair(WETH, DAI))

    assert quote.price == pytest.approx(2000.0)
    assert quote.liquidity == pytest.approx(1_000_000.0)
    method, url, payload = session.calls[0]
    assert method == 'POST'
    assert url == 'http://mock-subgraph'
    assert payload['variables']['tokens'] == [WETH.address, DAI.address]


@pytest.mark.asyncio
async def test_missing_weights_are_treated_as_equal():
    session = FakeSession([_pool([
        {'address': WETH.address, 'balance': '500', 'weight': None},
        {'address': DAI.address, 'balance': '1000000', 'weight': None},
    ])])

    quote = await _source(session).quote(TokenPair(WETH, DAI))

    assert quote.price == pytest.approx(2000.0)
    assert quote.liquidity == pytest.approx(2_000_000.0)


@pytest.mark.asyncio
async def test_no_pool_is_invalid_pair():
    session = FakeSession([{'data': {'pools': []}}])

    with pytest.raises(InvalidPair):
        await _source(session).quote(TokenPair(WETH, DAI))


@pytest.mark.asyncio
async def test_graphql_errors_are_parse_errors():
    session = FakeSession([{'errors': [{'message': 'indexer unavailable'}]}])

    with pytest.raises(ParseError):
        await _source(session).quote(TokenPair(WETH, DAI))
