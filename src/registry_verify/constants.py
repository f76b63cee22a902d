"""
Centralized constants for registry-verify configuration.

This module provides single-source-of-truth defaults for values shared across
the bundle builder, the verification runner and the CLI.

Environment variable overrides:
- CHAIN_ID: Target chain id (295 mainnet, 296 testnet, 297 previewnet)
- VERIFIER_URL: Sourcify-compatible verifier endpoint
- SOURCE_DIR: Directory holding the registry sources ('src' or 'contracts')
- FORGE_BIN: Path or name of the forge executable
"""

from __future__ import annotations

import os

# Hedera chain ids: 295 mainnet, 296 testnet, 297 previewnet
DEFAULT_CHAIN_ID = int(os.environ.get("CHAIN_ID", "296"))

DEFAULT_VERIFIER_URL = os.environ.get("VERIFIER_URL", "https://server-verify.hashscan.io/")

# Manual upload UI referenced in MANIFEST.txt
MANUAL_UPLOAD_URL = "https://verify.hashscan.io/"

DEFAULT_SOURCE_DIR = os.environ.get("SOURCE_DIR", "src")

FORGE_BIN = os.environ.get("FORGE_BIN", "forge")

# =============================================================================
# Bundle layout
# =============================================================================

DEFAULT_BUNDLE_DIR = "verify-bundles"
BUNDLE_MANIFEST_FILENAME = "metadata.json"
BUNDLE_INDEX_FILENAME = "MANIFEST.txt"

# Foundry build output directory
DEFAULT_BUILD_OUT_DIR = "out"

# =============================================================================
# Path resolution
# =============================================================================

# Conventional roots tried (in order) when a logical path is not remapped
SOURCE_SEARCH_ROOTS = ("src", "contracts", "lib", "node_modules")

# Package-alias marker and the dependency directory it maps to
PACKAGE_ALIAS_PREFIX = "@"
PACKAGE_DEPENDENCY_DIR = "node_modules"

# Segment-stripping heuristics: (segment, roots to retry under)
SEGMENT_RETRY_ROOTS = (
    ("contracts", ("contracts", "src")),
    ("src", ("src", "contracts")),
)

# =============================================================================
# Proxy wrapper
# =============================================================================

WRAPPER_CONTRACT_NAME = "ERC1967Proxy"
WRAPPER_SOURCE_FILENAME = "ERC1967Proxy.sol"
WRAPPER_FALLBACK_SOURCE_KEY = "lib/openzeppelin-contracts/contracts/proxy/ERC1967/ERC1967Proxy.sol"

# keccak256("eip1967.proxy.implementation") - 1
ERC1967_IMPLEMENTATION_SLOT = "0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc"

REGISTRY_VERSION = "1.0.0"

# =============================================================================
# Verification
# =============================================================================

DEFAULT_VERIFY_WORKERS = 3
MAX_VERIFY_WORKERS = 6
VERIFY_TIMEOUT_SECONDS = 180.0

# Output lines from forge that the operator already knows about
VERIFY_NOISE_LINES = (
    "Attempting to verify on Sourcify",
    "Pass the --etherscan-api-key",
)

# =============================================================================
# Toolchain and RPC
# =============================================================================

TOOLCHAIN_TIMEOUT_SECONDS = 120.0
RPC_REQUEST_TIMEOUT_SECONDS = 30.0

DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY = 2.0  # seconds
DEFAULT_RETRY_MAX_DELAY = 30.0  # seconds
