"""Bitcoin primitives — keys, addresses, scripts, transactions, PSBTs."""
