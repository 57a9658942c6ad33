"""modlock - Reproducible, Nix-compatible lockfiles for Go modules."""
