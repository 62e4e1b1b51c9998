from rehost.mappers.compute import EC2Mapper, ECSTaskDefinitionMapper, LambdaMapper
from rehost.mappers.database import AzureRedisMapper, CloudSQLMapper, ElastiCacheMapper, RDSMapper
from rehost.mappers.messaging import SQSMapper
from rehost.mappers.networking import ALBMapper, VPCMapper
from rehost.mappers.registry import MapperRegistry, MappingReport
from rehost.mappers.storage import EBSMapper, S3Mapper

MAPPERS = [
    EC2Mapper, ECSTaskDefinitionMapper, LambdaMapper,
    RDSMapper, CloudSQLMapper, ElastiCacheMapper, AzureRedisMapper,
    S3Mapper, EBSMapper,
    SQSMapper,
    ALBMapper, VPCMapper,
]


def default_registry() -> MapperRegistry:
    """A fresh registry holding every built-in mapper."""
    return MapperRegistry(cls() for cls in MAPPERS)


__all__ = ["MAPPERS", "MapperRegistry", "MappingReport", "default_registry"]
