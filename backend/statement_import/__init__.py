"""Statement import service: decode, validate, de-duplicate and commit bank exports."""
