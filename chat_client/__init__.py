"""Console client for the QuickChat relay."""
