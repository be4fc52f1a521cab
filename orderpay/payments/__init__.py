"""
Payments package - gateway client and callback reconciliation.

- constants: order/pay status enums and transition tables
- signing: MD5 signature, flat XML codec, refund payload decryption
- gateway: PaymentGateway (unified order, query, refund)
- dedup: CallbackDeduplicator (short window over Redis)
- reconciler: PaymentReconciler (settlement, refunds, callbacks)

Note: submodules are imported explicitly; models depend on `constants`,
so this package must not import the reconciler eagerly.
"""
