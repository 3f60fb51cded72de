"""
Integracion con la Seller API del marketplace.

Este paquete no persiste nada: expone un cliente HTTP paginado con backoff,
la configuracion por recurso (endpoint, claves de identidad, allow-list y
deny-list de campos) y un pool de proxies de salida opcional.

Objetivos de diseño:
- Paginas secuenciales: la API tiene rate limit y el orden no importa.
- Errores clasificados: 401/403 son fatales, 429/5xx se reintentan con tope.
- Sin estado global: cada job construye su cliente con su API key.
"""
