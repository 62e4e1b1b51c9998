from typing import Tuple

from rehost.mappers.base import BaseMapper, config_bool, config_int, config_str, env_ref
from rehost.models.mapping import DockerService, HealthCheck, MappingResult, Volume
from rehost.models.resource import Resource

_ENGINE_DEFAULTS = {
    "postgres": "16",
    "mysql": "8.0",
    "mariadb": "11",
}


def _engine_family(engine: str) -> str:
    engine = engine.lower()
    if "postgres" in engine:
        return "postgres"
    if "mariadb" in engine:
        return "mariadb"
    if "mysql" in engine or "aurora" in engine:
        return "mysql"
    return ""


def _major_version(family: str, version: str) -> str:
    if not version:
        return _ENGINE_DEFAULTS[family]
    parts = version.split(".")
    if family == "postgres":
        return parts[0]
    return ".".join(parts[:2])


def sql_service(result: MappingResult, family: str, version: str, db_name: str) -> None:
    """Turn the primary service into a PostgreSQL / MySQL / MariaDB container."""
    svc = result.docker_service
    data_volume = f"{svc.name}-data"
    password = env_ref(svc.name, "PASSWORD")
    if family == "postgres":
        svc.image = f"postgres:{version}-alpine"
        svc.environment.update({
            "POSTGRES_DB": db_name,
            "POSTGRES_USER": "postgres",
            "POSTGRES_PASSWORD": password,
            "PGDATA": "/var/lib/postgresql/data/pgdata",
        })
        svc.volumes.append(f"{data_volume}:/var/lib/postgresql/data")
        svc.healthcheck = HealthCheck(test=["CMD-SHELL", "pg_isready -U postgres"], interval="10s", timeout="5s", retries=5)
        port = "5432"
    else:
        svc.image = f"{family}:{version}"
        svc.environment.update({
            "MYSQL_ROOT_PASSWORD": password,
            "MYSQL_DATABASE": db_name,
            "MYSQL_USER": "appuser",
            "MYSQL_PASSWORD": password,
        })
        svc.volumes.append(f"{data_volume}:/var/lib/mysql")
        svc.healthcheck = HealthCheck(test=["CMD", "mysqladmin", "ping", "-h", "localhost"], interval="10s", timeout="5s", retries=5)
        port = "3306"
    svc.ports.append(f"{port}:{port}")
    svc.networks.append("internal")
    svc.labels["rehost.engine"] = family
    result.add_volume(Volume(name=data_volume))
    result.add_network("internal")


def _dump_command(family: str, db_name: str) -> Tuple[str, str]:
    if family == "postgres":
        return (f'pg_dump -h "$SOURCE_HOST" -U "$SOURCE_USER" -Fc {db_name} > dump.pgc',
                f"pg_restore -h localhost -U postgres -d {db_name} --clean dump.pgc")
    return (f'mysqldump -h "$SOURCE_HOST" -u "$SOURCE_USER" -p {db_name} > dump.sql',
            f"mysql -h 127.0.0.1 -u root -p {db_name} < dump.sql")


class RDSMapper(BaseMapper):
    TYPE = "aws_db_instance"

    def build(self, resource: Resource, result: MappingResult) -> None:
        engine = config_str(resource, "engine")
        family = _engine_family(engine)
        if not family:
            result.add_warning(f"Engine '{engine}' has no open-source drop-in; defaulting to PostgreSQL.")
            result.add_manual_step(f"Port the schema and queries of {resource.name} from {engine} to PostgreSQL")
            family = "postgres"
            version = _ENGINE_DEFAULTS["postgres"]
        else:
            version = _major_version(family, config_str(resource, "engine_version"))
        db_name = config_str(resource, "db_name") or config_str(resource, "name") or result.docker_service.name
        sql_service(result, family, version, db_name)

        dump, restore = _dump_command(family, db_name)
        result.add_script(f"migrate_{result.docker_service.name}.sh", "\n".join([
            "#!/bin/sh",
            "set -e",
            f"# Copy {resource.name} from RDS into the new container",
            dump,
            restore,
            "",
        ]))

        retention = config_int(resource, "backup_retention_period")
        if retention > 0:
            svc = result.docker_service
            backup = DockerService(
                name=f"{svc.name}-backup",
                image="prodrigestivill/postgres-backup-local:16" if family == "postgres" else "fradelg/mysql-cron-backup",
                environment={"BACKUP_KEEP_DAYS": str(retention)},
                volumes=[f"./backups/{svc.name}:/backups"],
                depends_on=[svc.name],
                networks=["internal"],
            )
            if family == "postgres":
                backup.environment.update({
                    "POSTGRES_HOST": svc.name,
                    "POSTGRES_DB": db_name,
                    "POSTGRES_USER": "postgres",
                    "POSTGRES_PASSWORD": env_ref(svc.name, "PASSWORD"),
                })
            result.add_service(backup)

        if config_str(resource, "parameter_group_name"):
            result.add_warning(
                f"Parameter group '{config_str(resource, 'parameter_group_name')}' detected; "
                "apply custom parameters in the database config."
            )
        if config_bool(resource, "multi_az"):
            result.add_warning("Multi-AZ deployment detected; set up database replication for high availability.")
        if config_bool(resource, "publicly_accessible"):
            result.add_warning("Database was publicly accessible; restrict access with firewall rules.")
        if config_bool(resource, "storage_encrypted"):
            result.add_warning("Storage encryption was enabled; configure encryption at rest on the new host.")
        result.add_manual_step(f"Set {env_ref(result.docker_service.name, 'PASSWORD')[2:-1]} in .env")
        result.add_manual_step(f"Import the existing database dump with migrate_{result.docker_service.name}.sh")


class CloudSQLMapper(BaseMapper):
    TYPE = "google_sql_database_instance"

    def build(self, resource: Resource, result: MappingResult) -> None:
        version = config_str(resource, "database_version")    # e.g. POSTGRES_15, MYSQL_8_0
        family = _engine_family(version)
        number = version.split("_", 1)[1].replace("_", ".") if family and "_" in version else ""
        family = family or "postgres"
        sql_service(result, family, _major_version(family, number), resource.name)
        if "SQLSERVER" in version.upper():
            result.add_warning(f"{version} has no open-source drop-in; defaulting to PostgreSQL.")
        settings = resource.config.get("settings")
        if isinstance(settings, list):
            settings = settings[0] if settings else {}
        if isinstance(settings, dict) and str(settings.get("availability_type", "")).upper() == "REGIONAL":
            result.add_warning("Regional availability detected; set up replication for high availability.")
        result.add_manual_step("Export the Cloud SQL database and import it into the new container")


class ElastiCacheMapper(BaseMapper):
    TYPE = "aws_elasticache_cluster"

    def build(self, resource: Resource, result: MappingResult) -> None:
        svc = result.docker_service
        engine = config_str(resource, "engine", "redis").lower()
        version = config_str(resource, "engine_version")
        if "memcached" in engine:
            svc.image = f"memcached:{version or '1.6'}-alpine"
            svc.ports.append("11211:11211")
            result.add_warning("Memcached data is not persisted; caches start cold.")
        else:
            svc.image = f"redis:{version.split('.')[0] if version else '7'}-alpine"
            svc.command = ["redis-server", "--appendonly", "yes"]
            svc.ports.append("6379:6379")
            svc.volumes.append(f"{svc.name}-data:/data")
            svc.healthcheck = HealthCheck(test=["CMD", "redis-cli", "ping"], interval="10s", timeout="5s", retries=5)
            result.add_volume(Volume(name=f"{svc.name}-data"))
        svc.networks.append("internal")
        result.add_network("internal")

        nodes = config_int(resource, "num_cache_nodes", 1) or config_int(resource, "num_cache_clusters", 1)
        if nodes > 1:
            result.add_warning(f"{nodes} cache nodes were configured; the container runs a single node.")
        if config_bool(resource, "transit_encryption_enabled"):
            result.add_warning("In-transit encryption was enabled; configure TLS on the cache if clients require it.")
        if config_str(resource, "auth_token"):
            result.add_manual_step("Set requirepass on the Redis container to match the old auth token")


class AzureRedisMapper(BaseMapper):
    TYPE = "azurerm_redis_cache"

    def build(self, resource: Resource, result: MappingResult) -> None:
        svc = result.docker_service
        svc.image = f"redis:{config_str(resource, 'redis_version', '6')}-alpine"
        svc.command = ["redis-server", "--appendonly", "yes"]
        svc.ports.append("6379:6379")
        svc.volumes.append(f"{svc.name}-data:/data")
        svc.networks.append("internal")
        result.add_volume(Volume(name=f"{svc.name}-data"))
        result.add_network("internal")
        if config_str(resource, "sku_name").lower() == "premium":
            result.add_warning("Premium tier features (clustering, geo-replication) are not reproduced.")
