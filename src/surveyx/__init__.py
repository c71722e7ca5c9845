"""surveyx — encrypted survey submissions anchored on a public ledger.

A submission is sealed for an MPC executor, written to an off-chain
metadata store, and anchored by a ledger transaction that queues the
computation. The SubmissionCoordinator keeps those three consistent.
"""

__version__ = "0.1.0"
