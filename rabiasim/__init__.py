"""Persistence layers, in-memory and simulated transports, fault descriptions and performance reporting for testing consensus clusters."""

__version__ = "0.4.1"
__all__ = ["persistence", "transport", "network_sim", "fault_injection", "scenarios"]