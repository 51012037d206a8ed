"""DocVault enrichment — webhook notifier for the external extraction worker."""
