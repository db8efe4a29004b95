"""Budget-constrained GPU procurement agent."""
