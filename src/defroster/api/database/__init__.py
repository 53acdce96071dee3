"""Server-tier and client-tier record stores."""
