"""
Constants for the DataChain dataset marketplace.

This module reads the service configuration from the environment (and a
local .env file when present): pinning gateway credentials, chain RPC and
contract settings, and the security parameters for sessions and tokens.
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Blob store selection: "pinata", "ipfs" or "memory"
BLOB_STORE = os.getenv("BLOB_STORE", "memory")

# Pinata credentials
PINATA_JWT = os.getenv("PINATA_JWT", "")
PINATA_API_KEY = os.getenv("PINATA_API_KEY", "")
PINATA_SECRET = os.getenv("PINATA_SECRET", "")
PINATA_API_URL = os.getenv("PINATA_API_URL", "https://api.pinata.cloud")

# IPFS gateway used for public file URLs and fetches
IPFS_GATEWAY = os.getenv("IPFS_GATEWAY", "https://gateway.pinata.cloud/ipfs")

# Local IPFS node HTTP API
IPFS_API_URL = os.getenv("IPFS_API_URL", "http://localhost:5001/api/v0")

# Chain settings
CHAIN_RPC_URL = os.getenv("CHAIN_RPC_URL", "")
CHAIN_NETWORK = os.getenv("CHAIN_NETWORK", "testnet")
CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS", "")
CONTRACT_ABI_PATH = os.getenv("CONTRACT_ABI_PATH", "artifacts/contracts/DatasetRegistry.sol/DatasetRegistry.json")

# Service account that registers datasets and submits purchases
SERVICE_ACCOUNT_ADDRESS = os.getenv("SERVICE_ACCOUNT_ADDRESS", "")
SERVICE_ACCOUNT_PRIVATE_KEY = os.getenv("SERVICE_ACCOUNT_PRIVATE_KEY", "")

# HMAC secret for download access tokens (token routes are disabled when empty)
ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET", "")
ACCESS_TOKEN_TTL = int(os.getenv("ACCESS_TOKEN_TTL", "86400"))  # 24 hours

# Key derivation work factor
MIN_PBKDF2_ITERATIONS = 100000
PBKDF2_ITERATIONS = int(os.getenv("PBKDF2_ITERATIONS", str(MIN_PBKDF2_ITERATIONS)))

# Session and challenge expiration times (in seconds)
SESSION_EXPIRATION = int(os.getenv("SESSION_EXPIRATION", "3600"))  # 1 hour
CHALLENGE_EXPIRATION = int(os.getenv("CHALLENGE_EXPIRATION", "300"))  # 5 minutes

# Datasets at or above this trust score count as verified
HIGH_TRUST_THRESHOLD = int(os.getenv("HIGH_TRUST_THRESHOLD", "90"))
