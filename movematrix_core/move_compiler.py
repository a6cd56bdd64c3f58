"""
Compile and publish Move modules with the Aptos CLI.

The CLI is treated as an opaque collaborator: the module is written into a
throw-away package directory, the CLI is run there, and only success or
failure plus the produced artifacts or transaction hash are reported back.
"""

import logging
import os
import re
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .exceptions import CompilationError, DeploymentError, ExternalServiceError


logger = logging.getLogger(__name__)


MODULE_HEADER_PATTERN = re.compile(r'module\s+([^\s{:]+)\s*::\s*([^\s{:]+)\s*{')
MODULE_ADDRESS_PATTERN = re.compile(r'^(0x[0-9a-fA-F]+|[A-Za-z_]\w*)$')
MODULE_NAME_PATTERN = re.compile(r'^[A-Za-z_]\w*$')
TX_HASH_PATTERN = re.compile(r'transaction_hash"\s*:\s*"(0x[a-f0-9]+)"')
NETWORK_PATTERN = re.compile(r'explorer\.aptoslabs\.com/txn/[^?]+\?network=([a-z]+)')
WALLET_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')

DEFAULT_WALLET_ADDRESS = "0x8cb99aca7a600522d56386b57ff7171d9e6dd9cf28c297a13a95d5a5f094b7ff"
DEFAULT_NETWORK = "testnet"
EXPLORER_URL = "https://explorer.aptoslabs.com/txn/{tx_hash}?network={network}"

MOVE_TOML_TEMPLATE = """[package]
name = "{module_name}Package"
version = "0.0.1"

[addresses]
{module_address} = "{wallet_address}"

[dependencies]
AptosFramework = {{ git = "https://github.com/aptos-labs/aptos-core.git", subdir = "aptos-move/framework/aptos-framework", rev = "mainnet" }}
"""


def _run_subprocess(*args, **kwargs):
    """subprocess.run with UTF-8 decoding that never fails on stray bytes."""
    if kwargs.get('text', False) and 'encoding' not in kwargs:
        kwargs['encoding'] = 'utf-8'
        kwargs['errors'] = 'replace'
    return subprocess.run(*args, **kwargs)


def is_valid_wallet_address(address: str) -> bool:
    return bool(WALLET_PATTERN.match(address or ''))


def parse_module_header(code: str) -> Tuple[str, str]:
    """Return (module_address, module_name) from ``module a::b {``."""
    match = MODULE_HEADER_PATTERN.search(code or '')
    if not match:
        raise CompilationError("Invalid module format. Could not extract module name.")
    module_address, module_name = match.group(1), match.group(2)
    if not MODULE_ADDRESS_PATTERN.match(module_address):
        raise CompilationError(f"Invalid module address: {module_address}")
    if not MODULE_NAME_PATTERN.match(module_name):
        raise CompilationError(f"Invalid module name: {module_name}")
    return module_address, module_name


def _to_hex(path: str) -> str:
    with open(path, 'rb') as f:
        return '0x' + f.read().hex()


@dataclass
class CompilationResult:
    """Outcome of compiling a module."""
    success: bool
    module_name: Optional[str] = None
    metadata_hex: Optional[str] = None
    module_hexes: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self):
        return {
            'success': self.success,
            'moduleName': self.module_name,
            'metadataHex': self.metadata_hex,
            'moduleHexes': list(self.module_hexes),
            'error': self.error,
        }


@dataclass
class DeploymentResult:
    """Outcome of publishing a module."""
    success: bool
    tx_hash: Optional[str] = None
    network: Optional[str] = None
    explorer_url: Optional[str] = None
    module_name: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self):
        return {
            'success': self.success,
            'txHash': self.tx_hash,
            'network': self.network,
            'explorerUrl': self.explorer_url,
            'moduleName': self.module_name,
            'error': self.error,
        }


class MoveCompiler:
    """Runs ``aptos move compile`` and ``aptos move publish``."""

    def __init__(self, cli_path: str = "aptos", timeout: float = 300,
                 default_wallet: str = "", aptos_config_dir: Optional[str] = None):
        self.cli_path = cli_path
        self.timeout = timeout
        self.default_wallet = default_wallet
        # Directory holding the CLI profile (config.yaml) used to sign publishes
        self.aptos_config_dir = aptos_config_dir or os.path.join(os.getcwd(), '.aptos')

    def resolve_wallet(self, wallet_address: Optional[str]) -> str:
        wallet = (wallet_address or self.default_wallet or DEFAULT_WALLET_ADDRESS).strip()
        if not is_valid_wallet_address(wallet):
            raise CompilationError(f"Invalid wallet address: {wallet}")
        return wallet

    def write_package(self, code: str, work_dir: str, wallet_address: str) -> str:
        """Lay out a Move package for ``code`` and return the module name."""
        module_address, module_name = parse_module_header(code)
        sources_dir = os.path.join(work_dir, 'sources')
        os.makedirs(sources_dir, exist_ok=True)
        with open(os.path.join(sources_dir, f"{module_name}.move"), 'w', encoding='utf-8') as f:
            f.write(code)
        with open(os.path.join(work_dir, 'Move.toml'), 'w', encoding='utf-8') as f:
            f.write(MOVE_TOML_TEMPLATE.format(
                module_name=module_name,
                module_address=module_address,
                wallet_address=wallet_address,
            ))
        return module_name

    def _run_cli(self, args: List[str], work_dir: str, error_class=CompilationError) -> str:
        command = [self.cli_path] + args
        logger.info(f"Running {' '.join(command)} in {work_dir}")
        try:
            result = _run_subprocess(
                command, cwd=work_dir, capture_output=True, text=True, timeout=self.timeout
            )
        except FileNotFoundError:
            raise error_class(f"Aptos CLI not found: {self.cli_path}")
        except subprocess.TimeoutExpired:
            raise error_class(f"Aptos CLI timed out after {self.timeout}s")

        output = (result.stdout or '') + (result.stderr or '')
        if result.returncode != 0:
            message = (result.stderr or result.stdout or '').strip() or f"exit code {result.returncode}"
            raise error_class(f"{' '.join(args[:2])} failed: {message}", output=output)
        return result.stdout or ''

    def _compile_in(self, code: str, work_dir: str, wallet_address: Optional[str]) -> CompilationResult:
        wallet = self.resolve_wallet(wallet_address)
        module_name = self.write_package(code, work_dir, wallet)
        self._run_cli(['move', 'compile', '--save-metadata'], work_dir)

        build_dir = os.path.join(work_dir, 'build', f"{module_name}Package")
        metadata_path = os.path.join(build_dir, 'package-metadata.bcs')
        modules_dir = os.path.join(build_dir, 'bytecode_modules')
        if not os.path.isfile(metadata_path) or not os.path.isdir(modules_dir):
            raise CompilationError("Compilation output files not found")

        module_hexes = [
            _to_hex(os.path.join(modules_dir, name))
            for name in sorted(os.listdir(modules_dir)) if name.endswith('.mv')
        ]
        return CompilationResult(
            success=True,
            module_name=module_name,
            metadata_hex=_to_hex(metadata_path),
            module_hexes=module_hexes,
        )

    def compile(self, code: str, wallet_address: Optional[str] = None) -> CompilationResult:
        """Compile a module. Failures are returned, not raised."""
        with tempfile.TemporaryDirectory(prefix='movematrix-') as work_dir:
            try:
                result = self._compile_in(code, work_dir, wallet_address)
            except CompilationError as e:
                logger.error(f"Compilation failed: {e}")
                return CompilationResult(success=False, error=str(e))
        logger.info(f"Compiled module {result.module_name}")
        return result

    def _copy_profile(self, work_dir: str):
        if not os.path.isdir(self.aptos_config_dir):
            raise DeploymentError(
                f"Aptos profile directory not found at {self.aptos_config_dir}; "
                f"deployment needs wallet credentials"
            )
        target = os.path.join(work_dir, '.aptos')
        os.makedirs(target, exist_ok=True)
        for name in os.listdir(self.aptos_config_dir):
            source = os.path.join(self.aptos_config_dir, name)
            if os.path.isfile(source):
                shutil.copyfile(source, os.path.join(target, name))

    def deploy(self, code: str, wallet_address: Optional[str] = None) -> DeploymentResult:
        """Compile and publish a module. Failures are returned, not raised."""
        module_name = None
        with tempfile.TemporaryDirectory(prefix='movematrix-') as work_dir:
            try:
                compiled = self._compile_in(code, work_dir, wallet_address)
                module_name = compiled.module_name
                self._copy_profile(work_dir)
                stdout = self._run_cli(['move', 'publish', '--assume-yes'], work_dir, DeploymentError)
            except ExternalServiceError as e:
                logger.error(f"Deployment failed: {e}")
                return DeploymentResult(success=False, module_name=module_name, error=str(e))

        tx_match = TX_HASH_PATTERN.search(stdout)
        if not tx_match:
            logger.error("Deployment output did not contain a transaction hash")
            return DeploymentResult(
                success=False,
                module_name=module_name,
                error="Could not extract transaction hash from deployment output",
            )

        tx_hash = tx_match.group(1)
        network_match = NETWORK_PATTERN.search(stdout)
        network = network_match.group(1) if network_match else DEFAULT_NETWORK
        logger.info(f"Deployed {module_name} in transaction {tx_hash} ({network})")
        return DeploymentResult(
            success=True,
            tx_hash=tx_hash,
            network=network,
            explorer_url=EXPLORER_URL.format(tx_hash=tx_hash, network=network),
            module_name=module_name,
        )
