"""AIFS wire contract: protobuf messages and gRPC stub for ``aifs.AifsService``.

The contract lives in the bundled ``aifs.proto``. ``grpc.protos_and_services``
compiles it at import time (through grpcio-tools) into the same modules
``protoc`` would generate, ``aifs_pb2`` and ``aifs_pb2_grpc``; the names
callers need are re-exported here.
"""

from __future__ import annotations

import grpc

PROTO_PATH = "commander_store/providers/aifs.proto"
SERVICE_NAME = "aifs.AifsService"

_messages, _services = grpc.protos_and_services(PROTO_PATH)

SnapshotInfo = _messages.SnapshotInfo
ObjectMetadata = _messages.ObjectMetadata
ListObjectsRequest = _messages.ListObjectsRequest
ListObjectsResponse = _messages.ListObjectsResponse
ObjectRequest = _messages.ObjectRequest
DeleteObjectRequest = _messages.DeleteObjectRequest
CreateDirectoryRequest = _messages.CreateDirectoryRequest
StatusResponse = _messages.StatusResponse
ExistsResponse = _messages.ExistsResponse
UploadMetadata = _messages.UploadMetadata
UploadObjectRequest = _messages.UploadObjectRequest
DownloadObjectResponse = _messages.DownloadObjectResponse
CopyObjectRequest = _messages.CopyObjectRequest
MoveObjectRequest = _messages.MoveObjectRequest
ObjectResponse = _messages.ObjectResponse
SemanticSearchRequest = _messages.SemanticSearchRequest
SemanticSearchResponse = _messages.SemanticSearchResponse
CreateSnapshotRequest = _messages.CreateSnapshotRequest
ListSnapshotsRequest = _messages.ListSnapshotsRequest
ListSnapshotsResponse = _messages.ListSnapshotsResponse

AifsServiceStub = _services.AifsServiceStub
AifsServiceServicer = _services.AifsServiceServicer
add_AifsServiceServicer_to_server = _services.add_AifsServiceServicer_to_server
