"""Tests for address encoding and address → script conversion."""

from __future__ import annotations

import pytest
from bip_utils.bech32 import SegwitBech32Decoder, SegwitBech32Encoder

from ephemeral_channel.btc.address import (
    TESTNET_HRP,
    address_to_script,
    base58check_decode,
    base58check_encode,
    taproot_address,
    validate_address,
)
from ephemeral_channel.btc.script import ScriptType, detect_script_type

_HASH20 = bytes(range(20))
_XONLY = bytes(range(32))


class TestBase58Check:
    def test_roundtrip(self) -> None:
        payload = b"\x6f" + _HASH20
        assert base58check_decode(base58check_encode(payload)) == payload

    def test_leading_zero_bytes(self) -> None:
        encoded = base58check_encode(b"\x00\x00" + _HASH20)
        assert encoded.startswith("11")

    def test_bad_checksum(self) -> None:
        encoded = base58check_encode(b"\x6f" + _HASH20)
        tampered = encoded[:-1] + ("2" if encoded[-1] != "2" else "3")
        with pytest.raises(ValueError, match="checksum"):
            base58check_decode(tampered)

    def test_invalid_character(self) -> None:
        with pytest.raises(ValueError, match="Invalid Base58 character"):
            base58check_decode("0OIl")


class TestTaprootAddress:
    def test_testnet_prefix(self) -> None:
        address = taproot_address(_XONLY)
        assert address.startswith("tb1p")
        assert len(address) == 62

    def test_decodes_as_witness_v1(self) -> None:
        version, program = SegwitBech32Decoder.Decode(TESTNET_HRP, taproot_address(_XONLY))
        assert version == 1
        assert program == _XONLY

    def test_rejects_wrong_length(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            taproot_address(_HASH20)

    def test_bip86_output_key(self) -> None:
        # BIP86 account 0, first receiving address
        output_key = bytes.fromhex(
            "a60869f0dbcf1dc659c9cecbaf8050135ea9e8cdc487053f1dc6880949dc684c"
        )
        assert taproot_address(output_key, hrp="bc") == (
            "bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr"
        )


class TestBip350Vectors:
    @pytest.mark.parametrize(
        ("address", "hrp", "script_hex"),
        [
            (
                "tb1pqqqqp399et2xygdj5xreqhjjvcmzhxw4aywxecjdzew6hylgvsesf3hn0c",
                "tb",
                "5120000000c4a5cad46221b2a187905e5266362b99d5e91c6ce24d165dab93e86433",
            ),
            (
                "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqzk5jj0",
                "bc",
                "512079be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798",
            ),
        ],
    )
    def test_valid(self, address: str, hrp: str, script_hex: str) -> None:
        assert address_to_script(address, hrp=hrp).hex() == script_hex

    def test_v1_with_bech32_checksum_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid segwit address"):
            address_to_script(
                "bc1p0xlxvlhemja6c4dqv22uapctqupfhlxm9h8z3k2e72q4k9hcz7vqh2y7hd", hrp="bc"
            )

    def test_round_trip_through_script(self) -> None:
        address = "tb1pqqqqp399et2xygdj5xreqhjjvcmzhxw4aywxecjdzew6hylgvsesf3hn0c"
        program = address_to_script(address)[2:]
        assert taproot_address(program) == address


class TestAddressToScript:
    def test_taproot(self) -> None:
        script = address_to_script(taproot_address(_XONLY))
        assert script == b"\x51\x20" + _XONLY
        assert detect_script_type(script) == ScriptType.P2TR

    def test_segwit_v0_keyhash(self) -> None:
        address = SegwitBech32Encoder.Encode(TESTNET_HRP, 0, _HASH20)
        script = address_to_script(address)
        assert script == b"\x00\x14" + _HASH20
        assert detect_script_type(script) == ScriptType.P2WPKH

    def test_legacy_p2pkh(self) -> None:
        address = base58check_encode(b"\x6f" + _HASH20)
        assert address[0] in "mn"
        script = address_to_script(address)
        assert detect_script_type(script) == ScriptType.P2PKH
        assert script[3:23] == _HASH20

    def test_legacy_p2sh(self) -> None:
        address = base58check_encode(b"\xc4" + _HASH20)
        assert address.startswith("2")
        assert detect_script_type(address_to_script(address)) == ScriptType.P2SH

    def test_surrounding_whitespace_ignored(self) -> None:
        address = taproot_address(_XONLY)
        assert address_to_script(f"  {address}\n") == address_to_script(address)

    def test_mainnet_legacy_rejected(self) -> None:
        address = base58check_encode(b"\x00" + _HASH20)
        with pytest.raises(ValueError, match="Unsupported address version"):
            address_to_script(address)

    def test_mainnet_segwit_rejected(self) -> None:
        address = taproot_address(_XONLY, hrp="bc")
        with pytest.raises(ValueError):
            address_to_script(address)

    def test_bad_bech32_checksum(self) -> None:
        address = taproot_address(_XONLY)
        tampered = address[:-1] + ("q" if address[-1] != "q" else "p")
        with pytest.raises(ValueError, match="Invalid segwit address"):
            address_to_script(tampered)


class TestValidateAddress:
    def test_valid(self) -> None:
        assert validate_address(taproot_address(_XONLY)) is True

    def test_invalid(self) -> None:
        assert validate_address("not-an-address") is False
