"""SLA cascade automation engine."""
