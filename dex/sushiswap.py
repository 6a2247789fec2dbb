#!/usr/bin/env python3
from dex.uniswap_v2 import ConstantProductSource


class SushiSwapSource(ConstantProductSource):
    """SushiSwap V2 on Ethereum; the factory and pair ABIs match Uniswap V2."""
