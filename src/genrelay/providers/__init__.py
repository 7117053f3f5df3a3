"""Provider implementations, one submodule per backend, imported on first use."""
