"""Pipeline phases; each module exposes its steps and a ``STAGES`` list."""
