"""Pure ABI encoding/decoding for Aave V3 style contracts — no I/O.

Addresses returned from this module are lowercase hex strings, the form
used as asset keys throughout the engine.
"""
from __future__ import annotations

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector

from ...models import AccountSummary, LiquidationParams, ReserveConfig, UserReserve

LIQUIDATION_PARAMS_TYPES = ["address", "address", "address", "uint256", "bool"]

_USER_RESERVE_TYPES = [
    "uint256",  # currentATokenBalance
    "uint256",  # currentStableDebt
    "uint256",  # currentVariableDebt
    "uint256",  # principalStableDebt
    "uint256",  # scaledVariableDebt
    "uint256",  # stableBorrowRate
    "uint256",  # liquidityRate
    "uint40",  # stableRateLastUpdated
    "bool",  # usageAsCollateralEnabled
]

_RESERVE_CONFIG_TYPES = [
    "uint256",  # decimals
    "uint256",  # ltv
    "uint256",  # liquidationThreshold
    "uint256",  # liquidationBonus
    "uint256",  # reserveFactor
    "bool",  # usageAsCollateralEnabled
    "bool",  # borrowingEnabled
    "bool",  # stableBorrowRateEnabled
    "bool",  # isActive
    "bool",  # isFrozen
]


def selector(signature: str) -> bytes:
    """4-byte function selector, e.g. ``selector("decimals()")``."""
    return function_signature_to_4byte_selector(signature)


def encode_call(signature: str, arg_types: list[str], args: list) -> bytes:
    """Build calldata: selector followed by ABI-encoded arguments."""
    return selector(signature) + encode(arg_types, args)


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------


def encode_get_user_account_data(user: str) -> bytes:
    return encode_call("getUserAccountData(address)", ["address"], [user])


def decode_account_summary(data: bytes) -> AccountSummary:
    """Decode ``getUserAccountData`` (base currency values, WAD health factor)."""
    collateral, debt, _available, _threshold, _ltv, health_factor = decode(
        ["uint256"] * 6, data
    )
    return AccountSummary(
        collateral_base=collateral, debt_base=debt, health_factor=health_factor
    )


def encode_get_reserves_list() -> bytes:
    return selector("getReservesList()")


def decode_address_list(data: bytes) -> list[str]:
    (addresses,) = decode(["address[]"], data)
    return [a.lower() for a in addresses]


def encode_get_user_emode(user: str) -> bytes:
    return encode_call("getUserEMode(address)", ["address"], [user])


def decode_uint(data: bytes) -> int:
    (value,) = decode(["uint256"], data)
    return value


def encode_liquidation_call(params: LiquidationParams) -> bytes:
    return encode_call(
        "liquidationCall(address,address,address,uint256,bool)",
        LIQUIDATION_PARAMS_TYPES,
        [
            params.collateral_asset,
            params.debt_asset,
            params.user,
            params.debt_to_cover,
            params.receive_a_token,
        ],
    )


def encode_flash_loan(
    receiver: str,
    asset: str,
    amount: int,
    on_behalf_of: str,
    params: bytes,
    referral_code: int = 0,
) -> bytes:
    """Encode ``Pool.flashLoan`` for a single asset with no debt opened."""
    return encode_call(
        "flashLoan(address,address[],uint256[],uint256[],address,bytes,uint16)",
        ["address", "address[]", "uint256[]", "uint256[]", "address", "bytes", "uint16"],
        [receiver, [asset], [amount], [0], on_behalf_of, params, referral_code],
    )


def encode_liquidation_params(params: LiquidationParams) -> bytes:
    """Encode the tuple the flash-loan executor forwards to ``liquidationCall``."""
    return encode(
        LIQUIDATION_PARAMS_TYPES,
        [
            params.collateral_asset,
            params.debt_asset,
            params.user,
            params.debt_to_cover,
            params.receive_a_token,
        ],
    )


def decode_liquidation_params(data: bytes) -> LiquidationParams:
    collateral, debt, user, amount, receive = decode(LIQUIDATION_PARAMS_TYPES, data)
    return LiquidationParams(
        collateral_asset=collateral.lower(),
        debt_asset=debt.lower(),
        user=user.lower(),
        debt_to_cover=amount,
        receive_a_token=receive,
    )


# ---------------------------------------------------------------------------
# Pool data provider
# ---------------------------------------------------------------------------


def encode_get_user_reserve_data(asset: str, user: str) -> bytes:
    return encode_call(
        "getUserReserveData(address,address)", ["address", "address"], [asset, user]
    )


def decode_user_reserve(asset: str, data: bytes) -> UserReserve:
    fields = decode(_USER_RESERVE_TYPES, data)
    return UserReserve(
        asset=asset.lower(),
        collateral_balance=fields[0],
        stable_debt=fields[1],
        variable_debt=fields[2],
        usage_as_collateral=fields[8],
    )


def encode_get_reserve_configuration_data(asset: str) -> bytes:
    return encode_call("getReserveConfigurationData(address)", ["address"], [asset])


def decode_reserve_config(asset: str, symbol: str, data: bytes) -> ReserveConfig:
    fields = decode(_RESERVE_CONFIG_TYPES, data)
    return ReserveConfig(
        asset=asset.lower(),
        symbol=symbol,
        decimals=fields[0],
        ltv_bps=fields[1],
        liquidation_threshold_bps=fields[2],
        liquidation_bonus_bps=fields[3],
        collateral_enabled=fields[5],
    )


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


def encode_get_asset_price(asset: str) -> bytes:
    return encode_call("getAssetPrice(address)", ["address"], [asset])


def encode_get_assets_prices(assets: list[str]) -> bytes:
    return encode_call("getAssetsPrices(address[])", ["address[]"], [assets])


def decode_uint_list(data: bytes) -> list[int]:
    (values,) = decode(["uint256[]"], data)
    return list(values)


# ---------------------------------------------------------------------------
# ERC-20
# ---------------------------------------------------------------------------


def encode_symbol() -> bytes:
    return selector("symbol()")


def decode_symbol(data: bytes) -> str:
    """Decode ``symbol()``; some older tokens return ``bytes32`` instead of string."""
    try:
        (symbol,) = decode(["string"], data)
        return symbol
    except Exception:
        (raw,) = decode(["bytes32"], data)
        return raw.rstrip(b"\x00").decode("utf-8", errors="replace")


def encode_balance_of(owner: str) -> bytes:
    return encode_call("balanceOf(address)", ["address"], [owner])


def encode_approve(spender: str, amount: int) -> bytes:
    return encode_call("approve(address,uint256)", ["address", "uint256"], [spender, amount])


def encode_decimals() -> bytes:
    return selector("decimals()")


# ---------------------------------------------------------------------------
# Uniswap V3 quoter
# ---------------------------------------------------------------------------


def encode_quote_exact_input_single(
    token_in: str, token_out: str, fee: int, amount_in: int
) -> bytes:
    """Encode ``Quoter.quoteExactInputSingle`` with no price limit."""
    return encode_call(
        "quoteExactInputSingle(address,address,uint24,uint256,uint160)",
        ["address", "address", "uint24", "uint256", "uint160"],
        [token_in, token_out, fee, amount_in, 0],
    )
