"""
Exceptions for SealKeep
Every error raised by the package derives from SealKeepError so callers
have one general catcher.
"""


class SealKeepError(Exception):
    # general container for errors
    pass


class CryptoUnavailableError(SealKeepError):
    # raised when the environment lacks a required primitive or RNG (fatal)
    pass


class AuthenticationFailedError(SealKeepError):
    # raised when an AES-GCM tag does not verify or the input is truncated
    pass


class UnwrapFailedError(SealKeepError):
    # raised for any RSA-OAEP unwrap failure; the message never says which
    pass


class KeyTooLargeError(SealKeepError):
    # raised when a key exceeds the OAEP payload limit of the recipient modulus
    pass


class DecryptionFailedError(SealKeepError):
    # raised on the read path when unwrap or open fails; never retried
    pass


class StorageError(SealKeepError):
    # raised if persistence fails in some way
    pass


class DuplicateFileError(StorageError):
    # raised when a wrapped key record already exists for the file id
    pass


class ConcurrentModificationError(StorageError):
    # raised when a compare-and-set loses against another writer
    pass


class BlobNotFoundError(StorageError):
    # raised when the blob store holds nothing under a file id
    pass


class IdentityNotFoundError(SealKeepError):
    # raised when the key directory has no public key for an identity
    pass


class AccessDeniedError(SealKeepError):
    # base of the access control outcomes
    pass


class KeyNotFoundError(AccessDeniedError):
    # raised when there is no record, or when existence is concealed
    pass


class ForbiddenError(AccessDeniedError):
    # raised when the requester is known not to be allowed
    pass


class StepUpRequiredError(SealKeepError):
    # raised when a valid one-time code is needed before key release
    pass


class CodeReplayedError(StepUpRequiredError):
    # raised when a one-time code was already consumed in its time step
    pass


class CustodyTimeoutError(SealKeepError):
    # raised when a collaborator call exceeds its timeout (transient)
    pass


class SessionLockedError(SealKeepError):
    # raised when a key session is locked or expired
    pass


class BlobExistsError(DuplicateFileError):
    # raised when a blob is already stored under the file id
    pass
