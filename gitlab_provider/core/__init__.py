"""Reconciliation core: identities, capability checks, context, planning and state."""
