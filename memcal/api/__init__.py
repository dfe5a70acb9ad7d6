"""HTTP interface for memcal."""
