import logging
import os
import platform

from configobj import ConfigObj, ConfigObjError, Section, flatten_errors
from validate import Validator

logger = logging.getLogger(__name__)

# The default extension for configuration files
config_extension = '.cfg'


def config_flavor(name, flavor=None):
    """
    >>> config_flavor('jellyfpga', 'schema')
    'jellyfpga.schema'
    """
    return name if not flavor else name + '.' + flavor


def config_filename(name, directory):
    return os.path.join(directory, name + config_extension)


def load_config_file_base(file, must_exist=True) -> ConfigObj:
    """
    Loads a configuration file
    :param file:        The configuration file to load
    :param must_exist:  when True, the file must exist or an IOError is raised.
    :return: The ConfigObj instance for the file.
    """
    try:
        return ConfigObj(file, interpolation='Template', file_error=must_exist) \
            if must_exist or os.path.exists(file) else ConfigObj()
    except ConfigObjError as e:
        raise type(e)(str(e) + ' at ' + file)


def config_flavor_file(name, directory, flavor=None) -> ConfigObj:
    """
    Loads a specialization of a config file, named after the base name followed by a period and the flavor.
    A missing file gives an empty configuration.
    """
    return load_config_file_base(config_filename(config_flavor(name, flavor), directory), must_exist=False)


def map_os_name(name):
    """
    >>> map_os_name('Windows')
    'windows'
    >>> map_os_name("Darwin")
    'osx'
    """
    name = name.lower()
    if name == 'darwin':
        name = 'osx'
    return name


def os_name():
    return map_os_name(platform.system())


def user_config_file(name):
    return os.path.expanduser('~/' + name + config_extension)


def load_config(name, directory):
    """
    Loads all the configuration files that relate to the given name.
    Later files override earlier ones:

    - the default specialization, shipped with the package
    - the platform specialization
    - the user override in the home directory
    - the local configuration beside the package

    When a schema specialization exists, the merged configuration is validated against it, which also
    converts values to their declared types and fills in missing values.

    :param name: the base name of the configuration to load.
    :param directory: the location of the configuration files
    """
    schema = config_filename(config_flavor(name, 'schema'), directory)
    config = ConfigObj(configspec=schema if os.path.exists(schema) else None)
    config.merge(config_flavor_file(name, directory, 'default'))
    config.merge(config_flavor_file(name, directory, os_name()))
    config.merge(load_config_file_base(user_config_file(name), must_exist=False))
    config.merge(config_flavor_file(name, directory))

    if config.configspec is None:
        return config
    result = config.validate(Validator())
    if result is not True:
        for section_list, key, res in flatten_errors(config, result):
            section = '.'.join(section_list) or '(root)'
            if key is not None:
                logger.error('the "%s" key in section "%s" failed validation: %s' % (key, section, res))
            else:
                logger.error('the section "%s" is missing' % section)
        raise ConfigObjError("the config file %s failed validation" % name)
    return config


def fetch_conf_path(conf: Section, path):
    """
    Retrieves the named configuration section, or None if there is no such section.
    """
    for p in path:
        conf = conf.get(p, None)
        if conf is None:
            return None
    return conf


def apply_conf_path(conf: Section, name_parts, target):
    conf = fetch_conf_path(conf, name_parts)
    if conf:
        apply_conf(conf, target)


def apply_conf(conf: Section, target):
    """
    Sets each value in the section on the target, for the names the target already defines.
    Nested sections are skipped.
    """
    for k, v in conf.items():
        if not isinstance(v, Section) and hasattr(target, k):
            setattr(target, k, v)


def fq_module_name(module):
    if not module.__package__:
        raise ConfigObjError('module %s has no package defined' % module.__name__)
    if module.__name__ != '__main__':
        return module.__name__
    base = os.path.splitext(os.path.basename(module.__file__))[0]
    return module.__package__ + '.' + base


def configure_module(module, config_name=None):
    """
    Applies the configuration to the given module's global values.

    The settings for module ``a.b`` are found in section ``[a]`` / ``[[b]]``. The files are named after
    config_name, which defaults to the module's own name, and are located in the module's directory.
    """
    fqname = fq_module_name(module)
    if not config_name:
        config_name = fqname.split('.')[-1]
    conf = load_config(config_name, os.path.dirname(module.__file__))
    apply_conf_path(conf, fqname.split('.'), module)
