"""Natural-history model variants that can be simulated by :py:class:`bcsim.Simulation`."""
