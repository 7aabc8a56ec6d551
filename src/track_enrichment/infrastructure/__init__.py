"""Infrastructure: catalog providers and remote service adapters."""
