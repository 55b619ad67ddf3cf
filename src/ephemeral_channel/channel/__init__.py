"""Channel core: secrets, derivation, envelopes, transactions, scanning, sessions."""
