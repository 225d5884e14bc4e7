"""Payment provider integration, reconciliation and installments."""
