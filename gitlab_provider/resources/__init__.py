"""Resource types managed by the provider."""
