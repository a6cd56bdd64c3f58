"""
Tests for the Aptos CLI compile/deploy boundary.
"""

import os
import subprocess
from unittest.mock import patch

import pytest

from movematrix_core.move_compiler import (
    MoveCompiler, is_valid_wallet_address, parse_module_header
)
from movematrix_core.exceptions import CompilationError


CODE = "module defi_matrix::demo_product {\n    use std::signer;\n}\n"
WALLET = "0x" + "ab" * 32
METADATA = b"\x01\x02\x03"
BYTECODE = b"\xa1\x1c\xeb\x0b"

PUBLISH_OUTPUT = (
    'Transaction submitted: https://explorer.aptoslabs.com/txn/0xdeadbeef?network=devnet\n'
    '{\n  "Result": {\n    "transaction_hash": "0xdeadbeef",\n    "success": true\n  }\n}\n'
)


class FakeCli:
    """Stands in for the aptos binary and records what it saw."""

    def __init__(self, publish_stdout=PUBLISH_OUTPUT, compile_returncode=0):
        self.calls = []
        self.move_toml = None
        self.profile_files = None
        self.publish_stdout = publish_stdout
        self.compile_returncode = compile_returncode

    def __call__(self, command, cwd=None, **kwargs):
        self.calls.append(command[1:])
        if command[1:3] == ['move', 'compile']:
            with open(os.path.join(cwd, 'Move.toml')) as f:
                self.move_toml = f.read()
            if self.compile_returncode != 0:
                return subprocess.CompletedProcess(command, self.compile_returncode, '', 'error[E01001]: bad syntax')
            build = os.path.join(cwd, 'build', 'demo_productPackage')
            os.makedirs(os.path.join(build, 'bytecode_modules'))
            with open(os.path.join(build, 'package-metadata.bcs'), 'wb') as f:
                f.write(METADATA)
            with open(os.path.join(build, 'bytecode_modules', 'demo_product.mv'), 'wb') as f:
                f.write(BYTECODE)
            return subprocess.CompletedProcess(command, 0, 'BUILDING demo_productPackage', '')
        self.profile_files = sorted(os.listdir(os.path.join(cwd, '.aptos')))
        return subprocess.CompletedProcess(command, 0, self.publish_stdout, '')


class TestHelpers:
    """Test cases for header parsing and wallet checks."""

    def test_parse_module_header(self):
        """Test the address and name are extracted."""
        assert parse_module_header(CODE) == ('defi_matrix', 'demo_product')

    def test_parse_module_header_invalid(self):
        """Test code without a module header is rejected."""
        with pytest.raises(CompilationError):
            parse_module_header("script { fun main() {} }")

    def test_parse_module_header_rejects_paths(self):
        """Test module names and addresses must be Move identifiers."""
        for code in ("module a::../../../x {}", "module a::sub/x {}", "module ../a::x {}"):
            with pytest.raises(CompilationError):
                parse_module_header(code)
        assert parse_module_header("module 0xCAFE::vault_2 {}") == ('0xCAFE', 'vault_2')

    def test_wallet_address(self):
        """Test wallet addresses need 0x plus 64 hex characters."""
        assert is_valid_wallet_address(WALLET)
        assert not is_valid_wallet_address("0x1234")
        assert not is_valid_wallet_address("ab" * 33)


class TestCompile:
    """Test cases for MoveCompiler.compile."""

    def setup_method(self):
        """Set up test fixtures."""
        self.compiler = MoveCompiler(cli_path='aptos', timeout=30)

    def test_success(self):
        """Test artifacts are returned as 0x-prefixed hex."""
        cli = FakeCli()
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=cli):
            result = self.compiler.compile(CODE, WALLET)

        assert result.success
        assert result.module_name == 'demo_product'
        assert result.metadata_hex == '0x010203'
        assert result.module_hexes == ['0xa11ceb0b']
        assert cli.calls == [['move', 'compile', '--save-metadata']]
        assert f'defi_matrix = "{WALLET}"' in cli.move_toml
        assert 'name = "demo_productPackage"' in cli.move_toml

    def test_default_wallet(self):
        """Test the configured default wallet is used when none is given."""
        cli = FakeCli()
        compiler = MoveCompiler(default_wallet="0x" + "cd" * 32)
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=cli):
            assert compiler.compile(CODE).success
        assert "0x" + "cd" * 32 in cli.move_toml

    def test_invalid_module(self):
        """Test the CLI is not run for code without a module header."""
        with patch('movematrix_core.move_compiler.subprocess.run') as run:
            result = self.compiler.compile("not move code", WALLET)
        assert not result.success
        assert "module" in result.error
        run.assert_not_called()

    def test_invalid_wallet(self):
        """Test malformed wallet addresses are refused."""
        with patch('movematrix_core.move_compiler.subprocess.run') as run:
            result = self.compiler.compile(CODE, "0x123")
        assert not result.success
        assert "Invalid wallet address" in result.error
        run.assert_not_called()

    def test_path_in_module_name(self, tmp_path):
        """Test a module name with path segments writes nothing."""
        target = tmp_path / 'escaped'
        code = f"module a::../../../../../../..{target} {{}}"
        with patch('movematrix_core.move_compiler.subprocess.run') as run:
            result = self.compiler.compile(code, WALLET)
        assert not result.success
        assert "Invalid module name" in result.error
        assert not (tmp_path / 'escaped.move').exists()
        run.assert_not_called()

    def test_cli_missing(self):
        """Test a missing binary is reported."""
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=FileNotFoundError()):
            result = self.compiler.compile(CODE, WALLET)
        assert not result.success
        assert "not found" in result.error

    def test_timeout(self):
        """Test a hung CLI is reported."""
        with patch('movematrix_core.move_compiler.subprocess.run',
                   side_effect=subprocess.TimeoutExpired(cmd='aptos', timeout=30)):
            result = self.compiler.compile(CODE, WALLET)
        assert not result.success
        assert "timed out" in result.error

    def test_compiler_error(self):
        """Test the compiler's message is passed through."""
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=FakeCli(compile_returncode=1)):
            result = self.compiler.compile(CODE, WALLET)
        assert not result.success
        assert "bad syntax" in result.error


class TestDeploy:
    """Test cases for MoveCompiler.deploy."""

    @pytest.fixture(autouse=True)
    def _profile(self, tmp_path):
        profile = tmp_path / '.aptos'
        profile.mkdir()
        (profile / 'config.yaml').write_text("profiles:\n  default:\n    account: abc\n")
        self.compiler = MoveCompiler(aptos_config_dir=str(profile))

    def test_success(self):
        """Test the transaction hash and network are extracted."""
        cli = FakeCli()
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=cli):
            result = self.compiler.deploy(CODE, WALLET)

        assert result.success
        assert result.tx_hash == '0xdeadbeef'
        assert result.network == 'devnet'
        assert result.explorer_url == 'https://explorer.aptoslabs.com/txn/0xdeadbeef?network=devnet'
        assert result.module_name == 'demo_product'
        assert cli.calls[-1] == ['move', 'publish', '--assume-yes']
        assert cli.profile_files == ['config.yaml']

    def test_network_defaults_to_testnet(self):
        """Test output without an explorer link."""
        cli = FakeCli(publish_stdout='{"Result": {"transaction_hash": "0xfeed"}}')
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=cli):
            result = self.compiler.deploy(CODE, WALLET)
        assert result.network == 'testnet'
        assert result.explorer_url.endswith('?network=testnet')

    def test_missing_transaction_hash(self):
        """Test output without a transaction hash is a failure."""
        cli = FakeCli(publish_stdout='Transaction submitted')
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=cli):
            result = self.compiler.deploy(CODE, WALLET)
        assert not result.success
        assert "transaction hash" in result.error

    def test_missing_profile(self, tmp_path):
        """Test publishing needs the CLI profile."""
        compiler = MoveCompiler(aptos_config_dir=str(tmp_path / 'nowhere'))
        cli = FakeCli()
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=cli):
            result = compiler.deploy(CODE, WALLET)
        assert not result.success
        assert "profile" in result.error
        assert cli.calls == [['move', 'compile', '--save-metadata']]

    def test_compile_failure_stops_deploy(self):
        """Test nothing is published when compilation fails."""
        cli = FakeCli(compile_returncode=1)
        with patch('movematrix_core.move_compiler.subprocess.run', side_effect=cli):
            result = self.compiler.deploy(CODE, WALLET)
        assert not result.success
        assert len(cli.calls) == 1
