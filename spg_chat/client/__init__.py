"""Chat client: session, history, optimistic message reconciliation and delivery."""
