"""
Unit tests for core cryptographic modules.

Tests:
- Transaction and block hashing
- Merkle trees (ordering, odd duplication, proofs)
- ECDSA signatures and addresses
"""

import re
from decimal import Decimal

import pytest

from biochain.blockchain.models import Transaction
from biochain.core_crypto.hashing import (
    HeaderHasher,
    canonical_decimal,
    hash_block_header,
    hash_transaction_fields,
    is_hex_digest,
    sha256_hex,
)
from biochain.core_crypto.merkle import EMPTY_MERKLE_ROOT, MerkleTree, merkle_root
from biochain.core_crypto.signatures import KeyPair, KeyRegistry, Wallet, derive_address


def _hashes(*labels):
    return [sha256_hex(label.encode()) for label in labels]


class TestTransactionHashing:
    """Unit tests for transaction digests."""

    def test_deterministic(self):
        """Same fields should give the same hash."""
        a = hash_transaction_fields("0xa", "0xb", Decimal("5"), Decimal("1"), 1000, "hi")
        b = hash_transaction_fields("0xa", "0xb", Decimal("5"), Decimal("1"), 1000, "hi")
        assert a == b
        assert is_hex_digest(a)

    @pytest.mark.parametrize("value", [
        "0x" + "a" * 62,
        " " + "a" * 63,
        "a" * 32 + "_" + "a" * 31,
        "A" * 64,
        "a" * 63,
        None,
    ])
    def test_hex_digest_rejects_loose_forms(self, value):
        assert not is_hex_digest(value)

    def test_decimal_normalization(self):
        """10 and 10.00 are the same amount."""
        a = hash_transaction_fields("0xa", "0xb", Decimal("10"), Decimal("0"), 1, None)
        b = hash_transaction_fields("0xa", "0xb", Decimal("10.00"), Decimal("0.0"), 1, None)
        assert a == b
        assert canonical_decimal(Decimal("10.00")) == "10"
        assert canonical_decimal(Decimal("0.000")) == "0"

    def test_every_field_affects_hash(self):
        """Changing any covered field should change the hash."""
        base = ("0xa", "0xb", Decimal("5"), Decimal("1"), 1000, "memo")
        original = hash_transaction_fields(*base)
        for i, changed in enumerate(["0xc", "0xc", Decimal("6"), Decimal("2"), 1001, "other"]):
            fields = list(base)
            fields[i] = changed
            assert hash_transaction_fields(*fields) != original

    def test_field_boundaries_are_unambiguous(self):
        """Length prefixes keep ('ab','c') distinct from ('a','bc')."""
        a = hash_transaction_fields("ab", "c", Decimal("1"), Decimal("0"), 0, None)
        b = hash_transaction_fields("a", "bc", Decimal("1"), Decimal("0"), 0, None)
        assert a != b

    def test_signature_excluded(self):
        """Signing should not change the transaction hash."""
        tx = Transaction.create("0xa", "0xb", 5, timestamp=1)
        before = tx.hash
        tx.signature = "3045"
        assert tx.compute_hash() == before


class TestBlockHashing:
    """Unit tests for block header digests."""

    def test_nonce_changes_hash(self):
        """Mining relies on the nonce being hashed."""
        a = hash_block_header(1, "0" * 64, 1000, 0, 1, EMPTY_MERKLE_ROOT, "0xm")
        b = hash_block_header(1, "0" * 64, 1000, 1, 1, EMPTY_MERKLE_ROOT, "0xm")
        assert a != b

    def test_header_hasher_matches(self):
        """Incremental hasher should agree with the one-shot function."""
        hasher = HeaderHasher(7, "ab" * 32, 123456, 2, EMPTY_MERKLE_ROOT, "0xminer")
        for nonce in (0, 1, 99, 2 ** 31):
            assert hasher.hash_with_nonce(nonce) == hash_block_header(
                7, "ab" * 32, 123456, nonce, 2, EMPTY_MERKLE_ROOT, "0xminer"
            )


class TestMerkleTree:
    """Unit tests for Merkle Tree."""

    def test_empty_root(self):
        """Empty set has a fixed digest."""
        assert merkle_root([]) == EMPTY_MERKLE_ROOT == sha256_hex(b"")

    def test_single_leaf(self):
        """Single leaf root is the hashed leaf."""
        (h,) = _hashes("a")
        assert merkle_root([h]) == MerkleTree.hash_leaf(h)

    def test_odd_leaves_duplication(self):
        """Last node is paired with itself on odd levels."""
        a, b, c = _hashes("a", "b", "c")
        la, lb, lc = (MerkleTree.hash_leaf(x) for x in (a, b, c))
        expected = MerkleTree.hash_internal(
            MerkleTree.hash_internal(la, lb),
            MerkleTree.hash_internal(lc, lc),
        )
        assert merkle_root([a, b, c]) == expected

    def test_order_sensitive(self):
        """Reordering transactions changes the root."""
        a, b, c = _hashes("a", "b", "c")
        assert merkle_root([a, b, c]) != merkle_root([b, a, c])

    def test_deterministic(self):
        hashes = _hashes("a", "b", "c", "d", "e")
        assert merkle_root(hashes) == merkle_root(list(hashes))

    def test_leaf_cannot_pose_as_internal_node(self):
        """Domain separation between leaves and internal nodes."""
        a, b = _hashes("a", "b")
        assert MerkleTree.hash_leaf(a) != MerkleTree.hash_internal(a, a)
        assert merkle_root([a, b]) != merkle_root([a])

    def test_proof_verification(self):
        """Every leaf should verify against the root."""
        hashes = _hashes("a", "b", "c", "d", "e")
        tree = MerkleTree()
        root = tree.build(hashes)
        for i, h in enumerate(hashes):
            assert MerkleTree.verify_proof(h, tree.get_proof(i), root)

    def test_invalid_proof_rejected(self):
        """Wrong leaf should fail verification."""
        hashes = _hashes("a", "b", "c", "d")
        tree = MerkleTree()
        root = tree.build(hashes)
        assert not MerkleTree.verify_proof(hashes[0], tree.get_proof(1), root)

    def test_tampered_proof_rejected(self):
        """Tampered sibling should fail verification."""
        hashes = _hashes("a", "b", "c", "d")
        tree = MerkleTree()
        root = tree.build(hashes)
        proof = tree.get_proof(1)
        tampered = [("00" * 32, proof[0][1])] + proof[1:]
        assert not MerkleTree.verify_proof(hashes[1], tampered, root)

    def test_proof_index_out_of_range(self):
        tree = MerkleTree()
        tree.build(_hashes("a"))
        with pytest.raises(ValueError):
            tree.get_proof(1)


class TestSignatures:
    """Unit tests for ECDSA transaction signatures."""

    def test_address_format(self):
        """Addresses are 0x plus 40 hex characters."""
        key_pair = KeyPair.generate()
        assert re.fullmatch(r"0x[0-9a-f]{40}", key_pair.address)
        assert derive_address(key_pair.public_key) == key_pair.address

    def test_sign_and_verify(self, registry, alice):
        """Registered wallet signatures verify."""
        tx = alice.build_transaction("0x" + "1" * 40, Decimal("5"))
        assert registry.verify(alice.address, tx.hash, tx.signature)

    def test_wrong_signer_fails(self, registry, alice, bob):
        """A signature by another key does not verify for the sender."""
        tx = Transaction.create(alice.address, bob.address, 5, timestamp=1)
        tx.signature = bob.sign_hash(tx.hash)
        assert not registry.verify(alice.address, tx.hash, tx.signature)

    def test_signature_bound_to_hash(self, registry, alice):
        tx = alice.build_transaction("0x" + "1" * 40, Decimal("5"))
        other = sha256_hex(b"other")
        assert not registry.verify(alice.address, other, tx.signature)

    def test_unregistered_address_fails(self, alice):
        """Unknown senders cannot be verified."""
        tx = alice.build_transaction("0x" + "1" * 40, Decimal("5"))
        assert not KeyRegistry().verify(alice.address, tx.hash, tx.signature)

    def test_malformed_signature_fails(self, registry, alice):
        tx = alice.build_transaction("0x" + "1" * 40, Decimal("5"))
        assert not registry.verify(alice.address, tx.hash, "not-hex")
        assert not registry.verify(alice.address, tx.hash, None)
        assert not registry.verify(alice.address, tx.hash, "00" * 8)

    def test_register_bytes_checks_address(self, alice, bob):
        """A key cannot be registered under someone else's address."""
        registry = KeyRegistry()
        public_bytes = KeyPair(None, alice.public_key).public_bytes()
        registry.register_bytes(alice.address, public_bytes)
        assert alice.address in registry
        with pytest.raises(ValueError):
            registry.register_bytes(bob.address, public_bytes)

    def test_public_only_key_cannot_sign(self, alice):
        wallet = Wallet(KeyPair.from_public_bytes(KeyPair(None, alice.public_key).public_bytes()))
        with pytest.raises(ValueError):
            wallet.sign_hash(sha256_hex(b"x"))
