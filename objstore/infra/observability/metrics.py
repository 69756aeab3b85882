from prometheus_client import Counter, Histogram

# 低基数标签：strategy 只取 file / bodies / compose / copy / custom
MULTIPART_UPLOADS = Counter(
    "objstore_multipart_uploads_total",
    "Multipart uploads by strategy and terminal status",
    ["strategy", "status"],
)

MULTIPART_PARTS = Counter(
    "objstore_multipart_parts_total",
    "Parts handed to complete-multipart-upload",
    ["strategy"],
)

ABORT_ATTEMPTS = Histogram(
    "objstore_multipart_abort_attempts",
    "Abort calls issued before list-parts reported a clean upload",
    buckets=(1, 2, 3, 5, 8, 13),
)
