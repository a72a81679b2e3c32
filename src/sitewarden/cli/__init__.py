"""SiteWarden command-line interface."""
