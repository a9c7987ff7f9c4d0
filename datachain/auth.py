"""
Authentication for the DataChain marketplace.

Users prove control of a wallet address by signing a one-time challenge.
A verified signature opens a session; the session token is what request
handlers use to learn the caller's address, never a raw request parameter.
"""

import os
import time
import hashlib
import secrets
import logging
import threading
from typing import Dict, Optional

from eth_account import Account
from eth_account.messages import encode_defunct

from datachain import constants
from datachain.errors import AccessDenied, InvalidInput
from datachain.helpers import short_address

logger = logging.getLogger(__name__)

CHALLENGE_PREFIX = "Sign this message to authenticate with DataChain: "


class AuthManager:
    """Challenge/response wallet authentication with in-memory sessions"""

    def __init__(self, session_expiration: int = constants.SESSION_EXPIRATION,
                 challenge_expiration: int = constants.CHALLENGE_EXPIRATION,
                 clock=time.time):
        self.session_expiration = session_expiration
        self.challenge_expiration = challenge_expiration
        self._clock = clock
        self._lock = threading.Lock()
        # Format: {wallet_address: {"nonce": nonce, "timestamp": timestamp}}
        self._challenges: Dict[str, Dict] = {}
        # Format: {session_token: {"wallet_address": address, "timestamp": timestamp}}
        self._sessions: Dict[str, Dict] = {}

    def _prune(self, now: float) -> None:
        """Drop expired challenges and sessions; caller holds the lock"""
        for address in [a for a, c in self._challenges.items() if now - c["timestamp"] > self.challenge_expiration]:
            del self._challenges[address]
        for token in [t for t, s in self._sessions.items() if now - s["timestamp"] > self.session_expiration]:
            del self._sessions[token]

    def generate_challenge(self, wallet_address: str) -> str:
        """
        Generate an authentication challenge for a wallet address.

        Args:
            wallet_address: The wallet address to generate a challenge for

        Returns:
            str: The message the wallet has to sign
        """
        if not wallet_address or not wallet_address.strip():
            raise InvalidInput("wallet_address is required")

        nonce = hashlib.sha256(os.urandom(32)).hexdigest()
        now = self._clock()
        with self._lock:
            self._prune(now)
            self._challenges[wallet_address.lower()] = {
                "nonce": nonce,
                "timestamp": now,
            }
        return f"{CHALLENGE_PREFIX}{nonce}"

    def verify_signature(self, wallet_address: str, signature: str) -> str:
        """
        Verify a signed challenge and open a session.

        Args:
            wallet_address: The wallet address that signed the message
            signature: The hex signature over the challenge message

        Returns:
            str: A session token

        Raises:
            AccessDenied: no pending challenge, expired challenge, or bad signature
        """
        if not wallet_address or not signature:
            raise InvalidInput("wallet_address and signature are required")
        wallet_address = wallet_address.lower()

        # Challenges are single use, whatever the outcome
        with self._lock:
            challenge = self._challenges.pop(wallet_address, None)
            self._prune(self._clock())

        if challenge is None:
            logger.error(f"No authentication challenge found for {short_address(wallet_address)}")
            raise AccessDenied("no pending challenge")

        if self._clock() - challenge["timestamp"] > self.challenge_expiration:
            logger.error(f"Authentication challenge for {short_address(wallet_address)} has expired")
            raise AccessDenied("challenge expired")

        message = encode_defunct(text=f"{CHALLENGE_PREFIX}{challenge['nonce']}")
        try:
            recovered_address = Account.recover_message(message, signature=signature)
        except Exception as e:
            logger.error(f"Error verifying signature: {str(e)}")
            raise AccessDenied("invalid signature")

        if recovered_address.lower() != wallet_address:
            logger.error(f"Signature verification failed for {short_address(wallet_address)}")
            raise AccessDenied("signature does not match wallet address")

        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = {
                "wallet_address": wallet_address,
                "timestamp": self._clock(),
            }
        logger.info(f"Authentication successful for {short_address(wallet_address)}")
        return token

    def authenticate(self, session_token: Optional[str]) -> str:
        """Return the wallet address of a live session"""
        if not session_token:
            raise AccessDenied("authentication required")
        with self._lock:
            session = self._sessions.get(session_token)
            if session is None:
                raise AccessDenied("unknown session")
            if self._clock() - session["timestamp"] > self.session_expiration:
                del self._sessions[session_token]
                raise AccessDenied("session expired")
            return session["wallet_address"]

    def logout(self, session_token: Optional[str]) -> bool:
        with self._lock:
            session = self._sessions.pop(session_token, None) if session_token else None
        if session is None:
            return False
        logger.info(f"Logged out {short_address(session['wallet_address'])}")
        return True
