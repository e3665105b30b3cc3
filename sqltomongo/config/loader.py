import base64
import binascii
import json
import xml.etree.ElementTree as ET
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Union
from loguru import logger
from sqltomongo.connectors.sqlserver import is_adonet_connection_string, url_from_adonet
from sqltomongo.errors import ConfigurationError
from sqltomongo.models.config import DEFAULT_PAGE_SIZE, DatabaseConfig, SyncConfig, TableMapping

# XML 配置文档的节点和属性名
XML_ROOT = "SQLToMongo"
XML_MAPPING = "Mapping"
XML_TABLE = "Table"
XML_SQL_CONNECTION = "SQLConnection"
XML_MONGO_CONNECTION = "MongoConnection"
XML_TABLE_ATTRIBUTES = {
    "PrimaryKeyColumn": "primary_key_column",
    "IsSelected": "selected",
    "LastSyncIdentity": "last_sync_cursor",
    "PageSize": "page_size",
    "MongoCollection": "target",
    "SQLTable": "source",
}

OPTIONAL_FIELDS = [
    'retry_times',
    'retry_interval',
    'verify_data'
]


def _database_config(value: Union[str, Dict[str, Any], None], side: str) -> DatabaseConfig:
    if value is None or value == "":
        return DatabaseConfig()
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return DatabaseConfig()
        if side == 'source' and is_adonet_connection_string(value):
            # 兼容 Data Source=...;Initial Catalog=... 格式的 SQL Server 连接字符串
            return DatabaseConfig.from_url(url_from_adonet(value))
        if "://" not in value:
            raise ConfigurationError(
                f"Invalid {side} connection string: expected a URL such as "
                f"mssql+pyodbc://... or mongodb://..."
            )
        return DatabaseConfig.from_url(value)
    if isinstance(value, dict):
        try:
            return DatabaseConfig(**value)
        except TypeError as e:
            raise ConfigurationError(f"Invalid {side} database configuration: {e}") from e
    raise ConfigurationError(f"Invalid {side} database configuration: {value!r}")


def _table_mapping(data: Dict[str, Any]) -> TableMapping:
    return TableMapping(
        source=data['source'],
        target=data.get('target', ''),
        primary_key_column=data.get('primary_key'),
        page_size=data.get('page_size', DEFAULT_PAGE_SIZE),
        last_sync_cursor=data.get('last_sync_cursor', ''),
        selected=data.get('selected', True),
        verify=data.get('verify', True)
    )


def config_from_dict(data: Dict[str, Any]) -> SyncConfig:
    """
    从字典构建同步配置

    Raises:
        ConfigurationError: 配置内容无效
    """
    try:
        config_kwargs = {
            'source': _database_config(data.get('source'), 'source'),
            'target': _database_config(data.get('target'), 'target'),
            'tables': [_table_mapping(table) for table in data.get('tables', [])]
        }
    except KeyError as e:
        raise ConfigurationError(f"配置文件缺少必要字段: {str(e)}") from e

    # 添加可选配置，使用配置文件中的值（如果存在）
    for field in OPTIONAL_FIELDS:
        if field in data:
            config_kwargs[field] = data[field]
            logger.debug(f"使用配置文件中的 {field}: {data[field]}")
        else:
            logger.debug(f"使用默认值 {field}")

    try:
        return SyncConfig(**config_kwargs)
    except TypeError as e:
        raise ConfigurationError(f"配置文件格式错误: {str(e)}") from e


def load_config(config_path: str) -> SyncConfig:
    """
    从文件加载同步配置，.xml 按 XML 配置文档解析，其余按 JSON 解析

    Args:
        config_path: 配置文件路径

    Returns:
        SyncConfig对象

    Raises:
        FileNotFoundError: 配置文件不存在
        ConfigurationError: 配置内容无效
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"配置文件不存在: {config_path}")

    content = path.read_text(encoding='utf-8')
    if path.suffix.lower() == '.xml':
        return load_xml_config(content)

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"配置文件JSON格式错误: {str(e)}") from e

    logger.debug(f"读取配置文件: {config_path}, 共 {len(data.get('tables', []))} 个表映射")
    return config_from_dict(data)


def _parse_bool(value: str, attribute: str, table: str) -> bool:
    if value == "":
        return True
    lowered = value.strip().lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ConfigurationError(f"Invalid boolean for {attribute}: {value!r}", table=table)


def load_xml_config(content: str) -> SyncConfig:
    """
    解析 XML 配置文档

    <SQLToMongo>
      <Mapping SQLConnection="..." MongoConnection="...">
        <Table SQLTable="..." MongoCollection="..." PrimaryKeyColumn="..."
               PageSize="500" LastSyncIdentity="" IsSelected="True" />
      </Mapping>
    </SQLToMongo>
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ConfigurationError(f"配置文件XML格式错误: {str(e)}") from e

    if root.tag != XML_ROOT:
        raise ConfigurationError(f"Unexpected XML root element <{root.tag}>, expected <{XML_ROOT}>")
    mapping = root.find(XML_MAPPING)
    if mapping is None:
        raise ConfigurationError(f"Missing <{XML_MAPPING}> element")

    tables = []
    for node in mapping.findall(XML_TABLE):
        table = node.get("SQLTable", "")
        tables.append(TableMapping(
            source=table,
            target=node.get("MongoCollection", ""),
            primary_key_column=node.get("PrimaryKeyColumn") or None,
            page_size=node.get("PageSize", ""),
            last_sync_cursor=node.get("LastSyncIdentity", ""),
            selected=_parse_bool(node.get("IsSelected", ""), "IsSelected", table)
        ))

    return SyncConfig(
        source=_database_config(mapping.get(XML_SQL_CONNECTION, ""), 'source'),
        target=_database_config(mapping.get(XML_MONGO_CONNECTION, ""), 'target'),
        tables=tables
    )


def load_encoded_config(encoded: str) -> SyncConfig:
    """解析 base64 编码的 XML 配置文档"""
    try:
        content = base64.b64decode(encoded.strip(), validate=True).decode('utf-8')
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ConfigurationError(f"Invalid base64 configuration: {str(e)}") from e
    return load_xml_config(content)


def dump_xml_config(config: SyncConfig) -> str:
    root = ET.Element(XML_ROOT)
    mapping = ET.SubElement(root, XML_MAPPING)
    mapping.set(XML_MONGO_CONNECTION, config.target.url or "")
    mapping.set(XML_SQL_CONNECTION, config.source.url or "")
    for table in config.tables:
        node = ET.SubElement(mapping, XML_TABLE)
        for attribute, field in XML_TABLE_ATTRIBUTES.items():
            value = getattr(table, field)
            node.set(attribute, "" if value is None else str(value))
    return '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(root, encoding='unicode')


def encode_config(config: SyncConfig) -> str:
    return base64.b64encode(dump_xml_config(config).encode('utf-8')).decode('ascii')


def _database_to_dict(config: DatabaseConfig) -> Union[str, Dict[str, Any]]:
    if config.url:
        return config.url
    return {k: v for k, v in asdict(config).items() if v is not None and k != 'url'}


def config_to_dict(config: SyncConfig) -> Dict[str, Any]:
    """序列化配置对象为字典"""
    return {
        'source': _database_to_dict(config.source),
        'target': _database_to_dict(config.target),
        'tables': [
            {
                'source': t.source,
                'target': t.target,
                'primary_key': t.primary_key_column,
                'page_size': t.page_size,
                'last_sync_cursor': t.last_sync_cursor,
                'selected': t.selected,
                'verify': t.verify
            }
            for t in config.tables
        ],
        'retry_times': config.retry_times,
        'retry_interval': config.retry_interval,
        'verify_data': config.verify_data
    }


def save_config(config: SyncConfig, config_path: str) -> None:
    """保存配置（包括最新游标），按文件后缀选择 XML 或 JSON"""
    path = Path(config_path)
    if path.suffix.lower() == '.xml':
        if not config.source.url or not config.target.url:
            raise ConfigurationError("XML configuration requires connection strings for both source and target")
        content = dump_xml_config(config)
    else:
        content = json.dumps(config_to_dict(config), indent=2, ensure_ascii=False)
    path.write_text(content, encoding='utf-8')
    logger.info(f"配置已保存: {config_path}")
