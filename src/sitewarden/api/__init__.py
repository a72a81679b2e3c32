"""HTTP surface for SiteWarden."""
