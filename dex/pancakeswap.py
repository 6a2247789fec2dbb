#!/usr/bin/env python3
from dex.uniswap_v2 import ConstantProductSource


class PancakeSwapSource(ConstantProductSource):
    """PancakeSwap V2 on BNB Smart Chain.

    Pairs are described with Ethereum addresses upstream, so tokens are
    re-resolved by symbol against the BSC token table before any call.
    """
