from prometheus_client import Counter


preview_passes_total = Counter(
    "celebrations_preview_passes_total",
    "Total preview pass runs",
)

previews_enqueued_total = Counter(
    "celebrations_previews_enqueued_total",
    "Total preview messages enqueued for event owners",
)

delivery_passes_total = Counter(
    "celebrations_delivery_passes_total",
    "Total delivery pass runs",
)

messages_enqueued_total = Counter(
    "celebrations_messages_enqueued_total",
    "Total celebration messages enqueued for teams",
)

deliveries_total = Counter(
    "celebrations_deliveries_total",
    "Delivery outcomes reported by the gateway",
    ["status"],
)

channel_fallbacks_total = Counter(
    "celebrations_channel_fallbacks_total",
    "Messages re-routed to the team's General channel after a 404",
)

occurrences_reconciled_total = Counter(
    "celebrations_occurrences_reconciled_total",
    "Stale Delivering occurrences reset to Initial",
)
