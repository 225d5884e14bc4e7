"""Stock ledger and replenishment forecasting."""
