"""
Hashing utilities for polyauthz
Attribute fingerprints and tamper-evident hash chains
"""

import hashlib
import json
from typing import Any, Mapping
import structlog

logger = structlog.get_logger(__name__)


class HashError(Exception):
    """Base exception for hashing-related errors"""
    pass


def secure_hash(data: bytes, algorithm: str = 'sha256') -> str:
    """
    Create secure hash of data
    
    Args:
        data: Data to hash
        algorithm: Hash algorithm (sha256, sha512, blake2b)
        
    Returns:
        Hex-encoded hash string
    """
    if algorithm == 'sha256':
        hasher = hashlib.sha256()
    elif algorithm == 'sha512':
        hasher = hashlib.sha512()
    elif algorithm == 'blake2b':
        hasher = hashlib.blake2b()
    else:
        raise HashError(f"Unsupported hash algorithm: {algorithm}")
    
    hasher.update(data)
    return hasher.hexdigest()


def hash_string(text: str, algorithm: str = 'sha256') -> str:
    """Hash a string using specified algorithm"""
    return secure_hash(text.encode('utf-8'), algorithm)


def _normalize(value: Any) -> Any:
    # Sets have no stable iteration order; sort them so fingerprints are deterministic
    if isinstance(value, (set, frozenset)):
        return sorted((_normalize(v) for v in value), key=repr)
    if isinstance(value, Mapping):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def create_data_fingerprint(data: Mapping[str, Any], algorithm: str = 'sha256') -> str:
    """
    Create deterministic fingerprint of data structure
    
    Args:
        data: Mapping to fingerprint; values that are not JSON types are
            rendered with str()
        algorithm: Hash algorithm
        
    Returns:
        Fingerprint hash
    """
    normalized = json.dumps(
        _normalize(data), sort_keys=True, separators=(',', ':'), default=str
    )
    return hash_string(normalized, algorithm)


class HashChain:
    """Hash chain for tamper-evident logging"""
    
    def __init__(self, initial_hash: str | None = None, algorithm: str = 'sha256'):
        self.algorithm = algorithm
        self.genesis_hash = secure_hash(b"genesis", algorithm)
        self.current_hash = initial_hash or self.genesis_hash
        self.chain_length = 0
    
    def link(self, previous_hash: str, data: bytes) -> str:
        """Hash of an entry chained onto previous_hash"""
        return secure_hash(previous_hash.encode('utf-8') + b":" + data, self.algorithm)
    
    def add_entry(self, data: bytes) -> str:
        """Add entry to hash chain"""
        self.current_hash = self.link(self.current_hash, data)
        self.chain_length += 1
        
        logger.debug("Added hash chain entry", 
                    length=self.chain_length, 
                    hash=self.current_hash[:16])
        
        return self.current_hash
