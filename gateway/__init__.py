"""Explorer gateway - resilient API core for the multi-chain explorer."""
