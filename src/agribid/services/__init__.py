"""Lógica de subastas: transiciones por reloj, pujas, EMD y liquidación."""
